from nexusdash import main
from nexusdash.core.config import get_settings


def test_run_serves_the_app_with_uvicorn(monkeypatch):
    calls = []
    monkeypatch.setattr(main.uvicorn, "run", lambda app, **kwargs: calls.append((app, kwargs)))

    main.run()

    settings = get_settings()
    assert calls == [
        (
            "nexusdash.main:app",
            {
                "host": settings.host,
                "port": settings.port,
                "log_level": settings.log_level.lower(),
            },
        )
    ]
