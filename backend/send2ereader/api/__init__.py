# Router aggregator – import each route module here and expose ``api_router``
# for convenient inclusion in the FastAPI app. The download router goes last
# because its ``/{filename}`` route would shadow everything after it.

from fastapi import APIRouter

from . import routes_download, routes_keys, routes_upload


api_router = APIRouter()
api_router.include_router(routes_keys.router, tags=["sessions"])
api_router.include_router(routes_upload.router, tags=["upload"])

download_router = APIRouter()
download_router.include_router(routes_download.router, tags=["download"])
