"""FastAPI REST API for Herald.

This module provides the administrative API for webhook subscriptions,
delivery history and statistics.

Example:
    ```python
    import uvicorn
    from herald.api import create_app

    app = create_app()
    uvicorn.run(app, host="0.0.0.0", port=8000)
    ```

Or run directly:
    ```bash
    uvicorn herald.api:app --reload
    ```
"""

from .app import app, create_app
from .router import router

__all__ = [
    "app",
    "create_app",
    "router",
]
