from __future__ import annotations

"""
Thin entrypoint for the Variant Resolution (FastAPI) server.

  ADMIN_TOKEN=... RESOLVER_MANIFEST=subjects.yaml python -m adaptation.api_server
"""

from adaptation.web.resolution_api import run_server


def main() -> None:
    run_server()


if __name__ == "__main__":
    main()
