"""SQLite-backed symbol graph: records, schema and store."""