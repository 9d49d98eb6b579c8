import pytest

from driver_hours.errors import UnknownCategory
from driver_hours.models import ActivityCategory
from driver_hours.normalization import normalize_category


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("driving", ActivityCategory.DRIVING),
        ("  DRIVING ", ActivityCategory.DRIVING),
        ("Condus", ActivityCategory.DRIVING),
        ("break", ActivityCategory.BREAK),
        ("Pauză", ActivityCategory.BREAK),
        ("work", ActivityCategory.WORK),
        ("Muncă", ActivityCategory.WORK),
        ("other", ActivityCategory.OTHER),
        ("Alte   activități", ActivityCategory.OTHER),
        (ActivityCategory.WORK, ActivityCategory.WORK),
    ],
)
def test_normalize_category(raw, expected):
    assert normalize_category(raw) is expected


@pytest.mark.parametrize("raw", ["", "   ", "sleeping", None, 3])
def test_unknown_category(raw):
    with pytest.raises(UnknownCategory) as excinfo:
        normalize_category(raw)
    assert excinfo.value.value == raw
