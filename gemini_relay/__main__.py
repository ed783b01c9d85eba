"""``python -m gemini_relay`` 启动 HTTP 服务。"""

import uvicorn

from gemini_relay.config.settings import settings


def main() -> None:
    uvicorn.run(
        "gemini_relay.api.web:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
    )


if __name__ == "__main__":
    main()
