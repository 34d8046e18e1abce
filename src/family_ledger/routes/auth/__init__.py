"""Authentication package initialization."""

from family_ledger.routes.auth.dependencies import get_current_principal, get_optional_principal
from family_ledger.routes.auth.routes import router
