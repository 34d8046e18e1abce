"""Routes package initialization."""

from family_ledger.routes.auth import router as auth_router
from family_ledger.routes.family import router as family_router
from family_ledger.routes.ledger import router as ledger_router
from family_ledger.routes.receipts import router as receipts_router
