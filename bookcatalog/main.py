"""
服务启动入口
"""
import uvicorn

from bookcatalog.config import settings


def main():
    uvicorn.run(
        "bookcatalog.web.app:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=settings.server.reload,
    )


if __name__ == "__main__":
    main()
