"""Run the ClassifyX API with uvicorn: ``python -m classifyx``."""

from __future__ import annotations

import uvicorn

from classifyx.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run("classifyx.main:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
