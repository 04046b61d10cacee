import logging

from fastapi import FastAPI

from stockledger.config import settings
from stockledger.routers import inventory, master_data, purchasing, sales

logging.basicConfig(
    level=settings.log_level.upper(),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)

app = FastAPI(title='Stock Ledger Console')

app.include_router(master_data.router)
app.include_router(purchasing.router)
app.include_router(sales.router)
app.include_router(inventory.router)


@app.get('/health')
def health() -> dict:
    return {'status': 'ok'}
