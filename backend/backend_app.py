# backend/app.py - FastAPI backend application

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from datetime import datetime
import csv
import io
import logging

from backend_database import Database
from backend_errors import GridValidationError, NotFoundError
from backend_gateway import DatabaseGateway
from backend_models import (
    BaseCreate, BaseUpdate, BulkCreateRequest, BulkDeleteRequest, BulkUpdateRequest,
    ColumnCreate, ColumnReorder, ColumnUpdate, GenerateRequest, RowCreate, RowUpdate,
    RowsQuery, TableCreate, TableUpdate,
)
from backend_config import settings

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="GridBase API",
    description="Bases, tables, columns and rows for the grid editor",
    version="1.0.0"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Initialize database and gateway
db = Database(settings.DATABASE_URL)
gateway = DatabaseGateway(db)

@app.on_event("startup")
async def startup_event():
    """Initialize database on startup"""
    await db.init()
    logger.info("Database initialized")

@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown"""
    await db.close()
    logger.info("Database connection closed")

def _http_error(action: str, e: Exception) -> HTTPException:
    """Map store errors onto HTTP status codes"""
    if isinstance(e, HTTPException):
        return e
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=e.message)
    if isinstance(e, GridValidationError):
        return HTTPException(status_code=400, detail=str(e))
    logger.error(f"{action} failed: {e}")
    return HTTPException(status_code=500, detail=f"Failed to {action.lower()}")

# Root endpoint
@app.get("/")
async def root():
    return {"message": "GridBase backend is running", "docs": "/docs"}

# Health check endpoint
@app.get("/healthz")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": "1.0.0"
    }

# Base endpoints
@app.get("/api/bases")
async def get_bases():
    """Get all bases of the current owner"""
    try:
        bases = await gateway.list_bases()
        return {"bases": [base.model_dump() for base in bases]}
    except Exception as e:
        raise _http_error("Get bases", e)

@app.post("/api/bases")
async def create_base(body: BaseCreate):
    try:
        return (await gateway.create_base(body.name.strip())).model_dump()
    except Exception as e:
        raise _http_error("Create base", e)

@app.patch("/api/bases/{base_id}")
async def update_base(base_id: str, body: BaseUpdate):
    try:
        if not body.name:
            raise HTTPException(status_code=400, detail="Nothing to update")
        return (await gateway.rename_base(base_id, body.name.strip())).model_dump()
    except Exception as e:
        raise _http_error("Update base", e)

@app.delete("/api/bases/{base_id}")
async def delete_base(base_id: str):
    """Delete a base and all of its tables"""
    try:
        await gateway.delete_base(base_id)
        return {"message": "Base deleted successfully"}
    except Exception as e:
        raise _http_error("Delete base", e)

# Table endpoints
@app.get("/api/bases/{base_id}/tables")
async def get_tables(base_id: str):
    """Get all tables of a base"""
    try:
        tables = await gateway.list_tables(base_id)
        return {"tables": [table.model_dump() for table in tables]}
    except Exception as e:
        raise _http_error("Get tables", e)

@app.post("/api/bases/{base_id}/tables")
async def create_table(base_id: str, body: TableCreate):
    """Create a table seeded with default columns and rows"""
    try:
        return (await gateway.create_table(base_id, body.name.strip())).model_dump()
    except Exception as e:
        raise _http_error("Create table", e)

@app.get("/api/tables/{table_id}")
async def get_table(table_id: str):
    try:
        return await db.get_table(table_id)
    except Exception as e:
        raise _http_error("Get table", e)

@app.patch("/api/tables/{table_id}")
async def update_table(table_id: str, body: TableUpdate):
    try:
        if not body.name:
            raise HTTPException(status_code=400, detail="Nothing to update")
        return (await gateway.rename_table(table_id, body.name.strip())).model_dump()
    except Exception as e:
        raise _http_error("Update table", e)

@app.delete("/api/tables/{table_id}")
async def delete_table(table_id: str):
    """Delete a table"""
    try:
        await gateway.delete_table(table_id)
        return {"message": "Table deleted successfully"}
    except Exception as e:
        raise _http_error("Delete table", e)

@app.post("/api/tables/{table_id}/generate")
async def generate_fake_rows(table_id: str, body: GenerateRequest):
    """Insert synthetic rows server-side"""
    try:
        return (await gateway.generate_fake_rows(table_id, body.count)).model_dump()
    except Exception as e:
        raise _http_error("Generate rows", e)

# Column endpoints
@app.get("/api/tables/{table_id}/columns")
async def get_columns(table_id: str):
    try:
        columns = await gateway.get_columns(table_id)
        return {"columns": [column.model_dump() for column in columns]}
    except Exception as e:
        raise _http_error("Get columns", e)

@app.post("/api/tables/{table_id}/columns")
async def create_column(table_id: str, body: ColumnCreate):
    try:
        return (await gateway.create_column(table_id, body.name, body.type)).model_dump()
    except Exception as e:
        raise _http_error("Create column", e)

@app.post("/api/tables/{table_id}/columns/reorder")
async def reorder_columns(table_id: str, body: ColumnReorder):
    try:
        columns = await gateway.reorder_columns(table_id, body.columnIds)
        return {"columns": [column.model_dump() for column in columns]}
    except Exception as e:
        raise _http_error("Reorder columns", e)

@app.patch("/api/columns/{column_id}")
async def update_column(column_id: str, body: ColumnUpdate):
    try:
        if not body.name and not body.type:
            raise HTTPException(status_code=400, detail="Nothing to update")
        return (await gateway.update_column(column_id, body.name, body.type)).model_dump()
    except Exception as e:
        raise _http_error("Update column", e)

@app.delete("/api/columns/{column_id}")
async def delete_column(column_id: str):
    try:
        await gateway.delete_column(column_id)
        return {"message": "Column deleted successfully"}
    except Exception as e:
        raise _http_error("Delete column", e)

# Row endpoints
@app.post("/api/tables/{table_id}/rows/query")
async def query_rows(table_id: str, body: RowsQuery):
    """Get a page of rows with search, filters and sorts"""
    try:
        page = await gateway.get_rows_page(
            table_id, body.limit, body.offset, body.search, body.filters, body.sorts
        )
        return page.model_dump()
    except Exception as e:
        raise _http_error("Query rows", e)

@app.post("/api/tables/{table_id}/rows")
async def create_row(table_id: str, body: RowCreate):
    try:
        return (await gateway.create_row(table_id, body.data)).model_dump()
    except Exception as e:
        raise _http_error("Create row", e)

@app.post("/api/tables/{table_id}/rows/bulk")
async def bulk_create_rows(table_id: str, body: BulkCreateRequest):
    try:
        return (await gateway.bulk_create_rows(table_id, body.records)).model_dump()
    except Exception as e:
        raise _http_error("Bulk create rows", e)

@app.post("/api/tables/{table_id}/rows/bulk-delete")
async def bulk_delete_rows(table_id: str, body: BulkDeleteRequest):
    try:
        return {"deleted": await gateway.bulk_delete_rows(table_id, body.ids)}
    except Exception as e:
        raise _http_error("Bulk delete rows", e)

@app.post("/api/tables/{table_id}/rows/bulk-update")
async def bulk_update_rows(table_id: str, body: BulkUpdateRequest):
    try:
        updates = [update.model_dump() for update in body.updates]
        return {"updated": await gateway.bulk_update_rows(table_id, updates)}
    except Exception as e:
        raise _http_error("Bulk update rows", e)

@app.patch("/api/rows/{row_id}")
async def update_row(row_id: str, body: RowUpdate):
    """Merge the given keys into a row"""
    try:
        return (await gateway.update_row(row_id, body.data)).model_dump()
    except Exception as e:
        raise _http_error("Update row", e)

@app.delete("/api/rows/{row_id}")
async def delete_row(row_id: str):
    try:
        await gateway.delete_row(row_id)
        return {"message": "Row deleted successfully"}
    except Exception as e:
        raise _http_error("Delete row", e)

# Export endpoints
async def _all_rows(table_id: str):
    rows = []
    offset = 0
    while True:
        page = await gateway.get_rows_page(table_id, settings.MAX_PAGE_LIMIT, offset)
        rows.extend(page.rows)
        if not page.hasMore:
            return rows
        offset += settings.MAX_PAGE_LIMIT

@app.get("/api/tables/{table_id}/export.json")
async def export_json(table_id: str):
    """Export a table as JSON"""
    try:
        table = await db.get_table(table_id)
        rows = await _all_rows(table_id)
        export_data = {
            "meta": {
                "exportedAt": datetime.utcnow().isoformat(),
                "rowCount": len(rows),
                "version": "1.0.0"
            },
            "table": table,
            "rows": [row.model_dump() for row in rows]
        }

        return JSONResponse(
            content=export_data,
            headers={
                "Content-Disposition": f"attachment; filename=gridbase-export-{datetime.now().strftime('%Y%m%d-%H%M%S')}.json"
            }
        )
    except Exception as e:
        raise _http_error("Export JSON", e)

@app.get("/api/tables/{table_id}/export.csv")
async def export_csv(table_id: str):
    """Export a table as CSV"""
    try:
        table = await db.get_table(table_id)
        rows = await _all_rows(table_id)

        output = io.StringIO()
        writer = csv.writer(output)

        headers = [column["name"] for column in table["columns"]]
        writer.writerow(headers)
        for row in rows:
            writer.writerow([row.data.get(name, "") for name in headers])

        output.seek(0)

        return StreamingResponse(
            io.BytesIO(output.getvalue().encode()),
            media_type="text/csv",
            headers={
                "Content-Disposition": f"attachment; filename=gridbase-export-{datetime.now().strftime('%Y%m%d-%H%M%S')}.csv"
            }
        )
    except Exception as e:
        raise _http_error("Export CSV", e)

# Debug endpoints (development only)
if settings.DEBUG:
    @app.delete("/api/debug/reset")
    async def reset_database():
        """Reset database (debug only)"""
        try:
            await db.reset()
            return {"message": "Database reset successfully"}
        except Exception as e:
            raise _http_error("Reset database", e)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("backend_app:app", host=settings.HOST, port=settings.PORT, reload=True)
