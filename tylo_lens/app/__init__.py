# Ingestion App Package
