"""API routes."""

from driver_payroll.api.routes.health import router as health_router
from driver_payroll.api.routes.ledgers import router as ledgers_router
from driver_payroll.api.routes.mileage import router as mileage_router
from driver_payroll.api.routes.payroll import router as payroll_router

__all__ = ["health_router", "ledgers_router", "mileage_router", "payroll_router"]
