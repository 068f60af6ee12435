"""FastAPI application entrypoint."""

from __future__ import annotations

from pathlib import Path

from fastapi import FastAPI
from fastapi.responses import HTMLResponse

from newsaggregator.api.routes import router
from newsaggregator.cache import CacheManager

INDEX_HTML = """
<!DOCTYPE html>
<html lang="en">
  <head>
    <meta charset="utf-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1" />
    <title>AI News Aggregator</title>
    <style>
      body { font-family: system-ui, sans-serif; margin: 2rem auto; max-width: 60rem; }
      button { padding: 0.5rem 1rem; }
      pre { background: #f4f4f5; padding: 1rem; overflow-x: auto; }
    </style>
  </head>
  <body>
    <h1>AI News Aggregator</h1>
    <p>Collects AI news from forums, video channels, research indexes and feeds.</p>
    <button id="run">Run aggregation</button>
    <pre id="output">Press the button to start a run.</pre>
    <script>
      document.getElementById("run").addEventListener("click", async () => {
        const output = document.getElementById("output");
        output.textContent = "Running...";
        const response = await fetch("/api/runs", { method: "POST" });
        output.textContent = JSON.stringify(await response.json(), null, 2);
      });
    </script>
  </body>
</html>
"""


def create_app(
    config_path: str | Path | None = None,
    cache: CacheManager | None = None,
    blob_root: str | Path | None = None,
) -> FastAPI:
    app = FastAPI(title="AI News Aggregator", description="Multi-source AI news extraction API")
    app.state.config_path = config_path
    app.state.cache = cache
    app.state.blob_root = blob_root
    app.include_router(router, prefix="/api")

    @app.get("/", response_class=HTMLResponse)
    async def index() -> str:
        return INDEX_HTML

    return app


app = create_app()
