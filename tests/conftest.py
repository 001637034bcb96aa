import pytest

from commit_sage.config.loader import ENV_VARS


@pytest.fixture(autouse=True)
def isolate_user_environment(tmp_path, monkeypatch):
    """Keep the developer's own configuration out of the tests.

    A ``commit-sage.toml`` in the real home directory or ``COMMIT_SAGE_*``
    variables exported in the shell would otherwise leak into every
    ``load_config`` call. The home directory is redirected to an empty
    temporary directory and the variables are removed for each test.
    """
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setattr("commit_sage.config.loader._get_home_directory", lambda: home)
    for name in list(ENV_VARS) + ["TOGETHER_API_KEY"]:
        monkeypatch.delenv(name, raising=False)
    yield home
