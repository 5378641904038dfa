import uvicorn
from toolloom.core.settings import settings

def main():
    uvicorn.run(
        "toolloom.app:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.API_HOT_RELOAD,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
