"""
Global Patch Mode

Replace a module/class attribute with an instrumented version and put the
exact original back on uninstall.

DESIGN RULES:
- install() fails loudly when the target attribute does not exist
- install() twice is a logged no-op
- One active patch per (target, attribute): a second Patch on the same slot
  is skipped with a warning until the first is uninstalled
- uninstall() restores the very object that was replaced, and only while
  the attribute still holds this patch's replacement
- suppress_instrumentation() lets the SDK's own network calls go untraced
"""

import contextvars
import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, Optional, Tuple

from tylo_lens.core.errors import UnsupportedEnvironmentError


logger = logging.getLogger(__name__)

_SUPPRESSED: contextvars.ContextVar[bool] = contextvars.ContextVar("tylo_lens_suppressed", default=False)

# (id(target), attribute) -> the Patch currently installed there
_ACTIVE: Dict[Tuple[int, str], "Patch"] = {}
_ACTIVE_LOCK = threading.Lock()


def active_patch(target: Any, attribute: str) -> Optional["Patch"]:
    """The installed Patch on target.attribute, if any."""
    return _ACTIVE.get((id(target), attribute))


@contextmanager
def suppress_instrumentation() -> Iterator[None]:
    """Requests issued inside this block are not traced by any interceptor."""
    token = _SUPPRESSED.set(True)
    try:
        yield
    finally:
        _SUPPRESSED.reset(token)


def instrumentation_suppressed() -> bool:
    return _SUPPRESSED.get()


class Patch:
    """
    One attribute replacement.

    Args:
        target: Module or class that owns the attribute
        attribute: Attribute name
        factory: Called with the original attribute, returns the replacement
    """

    def __init__(self, target: Any, attribute: str, factory: Callable[[Any], Any]):
        self.target = target
        self.attribute = attribute
        self._factory = factory
        self._original: Optional[Any] = None
        self._replacement: Optional[Any] = None
        self._owned = False
        self._installed = False

    @property
    def installed(self) -> bool:
        return self._installed

    @property
    def original(self) -> Optional[Any]:
        return self._original

    def install(self) -> "Patch":
        if self._installed:
            logger.warning(f"[PATCH] {self._label()} already installed")
            return self

        # vars() so that a class attribute is restored on the class that owned it
        owner_dict = vars(self.target) if hasattr(self.target, "__dict__") else {}
        if self.attribute not in owner_dict and not hasattr(self.target, self.attribute):
            raise UnsupportedEnvironmentError(f"{self._label()} is not available in this environment")

        with _ACTIVE_LOCK:
            key = self._key()
            if key in _ACTIVE:
                logger.warning(f"[PATCH] {self._label()} is already patched by another interceptor; skipping")
                return self

            self._owned = self.attribute in owner_dict
            self._original = owner_dict.get(self.attribute, getattr(self.target, self.attribute))
            self._replacement = self._factory(getattr(self.target, self.attribute))
            setattr(self.target, self.attribute, self._replacement)
            self._installed = True
            _ACTIVE[key] = self
        logger.debug(f"[PATCH] installed {self._label()}")
        return self

    def uninstall(self) -> None:
        if not self._installed:
            return
        with _ACTIVE_LOCK:
            current = vars(self.target).get(self.attribute) if hasattr(self.target, "__dict__") else None
            if current is not self._replacement:
                logger.warning(f"[PATCH] {self._label()} was replaced after install; leaving it in place")
            elif self._owned:
                setattr(self.target, self.attribute, self._original)
            else:
                delattr(self.target, self.attribute)
            _ACTIVE.pop(self._key(), None)
            self._installed = False
            self._original = None
            self._replacement = None
        logger.debug(f"[PATCH] released {self._label()}")

    def _key(self) -> Tuple[int, str]:
        return id(self.target), self.attribute

    def _label(self) -> str:
        return f"{getattr(self.target, '__name__', repr(self.target))}.{self.attribute}"

    def __enter__(self) -> "Patch":
        return self.install()

    def __exit__(self, *exc_info: Any) -> None:
        self.uninstall()
