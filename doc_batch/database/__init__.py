"""Document store implementations (SQL Server via pyodbc, in-memory)."""
