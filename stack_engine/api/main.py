# stack_engine/api/main.py

from fastapi import FastAPI

from stack_engine.api.routes.deployments import router as deployments_router
from stack_engine.api.routes.stacks import router as stacks_router

app = FastAPI(title="Stack Engine API")


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(stacks_router)
app.include_router(deployments_router)
