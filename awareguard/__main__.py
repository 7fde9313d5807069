"""Run AwareGuard server: python3 -m awareguard"""

import uvicorn

from awareguard.config import settings


def main() -> None:
    uvicorn.run("awareguard.api.app:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
