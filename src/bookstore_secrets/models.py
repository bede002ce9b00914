"""Value objects handed out by the secret service."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Final

DEFAULT_DATABASE_PORT: Final[int] = 1433

DB_SERVER: Final[str] = "DB_SERVER"
DB_DATABASE: Final[str] = "DB_DATABASE"
DB_USERNAME: Final[str] = "DB_USERNAME"
DB_PASSWORD: Final[str] = "DB_PASSWORD"
DB_PORT: Final[str] = "DB_PORT"


@dataclass(frozen=True, slots=True)
class DatabaseSecrets:
    """Resolved SQL Server connection settings."""

    server: str
    database: str
    username: str
    password: str = field(repr=False)
    port: int = DEFAULT_DATABASE_PORT

    def build_connection_string(self) -> str:
        """Build a SQL-authenticated connection string."""

        return (
            f"Server={self.server},{self.port};Database={self.database};"
            f"User Id={self.username};Password={self.password};"
            "Encrypt=True;TrustServerCertificate=False;Connection Timeout=30;"
        )

    def build_integrated_connection_string(self) -> str:
        """Build a connection string using integrated security."""

        return (
            f"Server={self.server},{self.port};Database={self.database};"
            "Integrated Security=True;Connection Timeout=30;"
        )
