import uvicorn

from riselocal_api.core.settings import settings


def main() -> None:
    uvicorn.run(
        "riselocal_api.app:create_app",
        factory=True,
        reload=settings.environment == "development",
        log_config=None,
    )


if __name__ == "__main__":
    main()
