"""Personal ledger package initialization."""

from family_ledger.routes.ledger.routes import router
