import pytest

from personaflow.core.startup_checks import validate_settings


def test_default_settings_are_valid(settings):
    validate_settings(settings)


@pytest.mark.parametrize("field, value", [
    ("AFFINITY_MIN_EVENTS", 0),
    ("AFFINITY_MAX_VISITORS_PER_RUN", 0),
    ("AFFINITY_MAX_POSTS", 0),
    ("AFFINITY_CACHE_TTL_SECONDS", 3600),
    ("ABANDON_MIN_AGE_MINUTES", 120),
    ("ABANDON_MAX_PER_RUN", 0),
    ("CATEGORY_DISMISS_FACTOR", 1.0),
    ("ESCALATING_WEIGHT_CAP", 0),
    ("JOB_LOCK_TTL_SECONDS", 10),
])
def test_inconsistent_settings_are_rejected(settings, field, value):
    setattr(settings, field, value)
    with pytest.raises(RuntimeError):
        validate_settings(settings)
