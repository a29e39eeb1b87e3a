"""
Lending API Application Factory
"""

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .creditors import cash_flow_router, router as creditors_router
from .installments import router as installments_router
from .loans import router as loans_router
from .periodicities import router as periodicities_router
from .reporting import router as reporting_router
from .simulations import router as simulations_router
from .. import __version__


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Lending Core API",
        description="Loan lifecycle engine: scheduling, amortization, installments and cash flow",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(simulations_router, prefix="/simulations", tags=["Simulations"])
    app.include_router(loans_router, prefix="/loans", tags=["Loans"])
    app.include_router(installments_router, prefix="/installments", tags=["Installments"])
    app.include_router(creditors_router, prefix="/creditors", tags=["Creditors"])
    app.include_router(cash_flow_router, prefix="/cash-flow", tags=["Cash Flow"])
    app.include_router(periodicities_router, prefix="/periodicities", tags=["Periodicities"])
    app.include_router(reporting_router, prefix="/reports", tags=["Reports"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "lending_core_api",
            "version": __version__
        }

    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Lending Core API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "simulations": "/simulations",
                "loans": "/loans",
                "installments": "/installments",
                "creditors": "/creditors",
                "cash_flow": "/cash-flow",
                "periodicities": "/periodicities",
                "reports": "/reports"
            }
        }

    return app


app = create_app()


def run_server(host: str = "0.0.0.0", port: int = 8090, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "lending_core.api:app",
        host=host,
        port=port,
        reload=debug,
        log_level="info"
    )
