import pytest

from dropcloud.exceptions import LabelExpressionError
from dropcloud.labels import matches, parse_label_set

pytestmark = [pytest.mark.unit, pytest.mark.xdist_group("unit")]

LINUX_DOCKER = frozenset({"linux", "docker"})


class TestParseLabelSet:
    def test_whitespace(self):
        assert parse_label_set("  linux\tdocker \n x64 ") == {"linux", "docker", "x64"}

    def test_empty(self):
        assert parse_label_set("") == frozenset()
        assert parse_label_set(None) == frozenset()


class TestMatches:
    @pytest.mark.parametrize(
        ("expr", "expected"),
        [
            ("linux", True),
            ("windows", False),
            ("linux && docker", True),
            ("linux && windows", False),
            ("windows || docker", True),
            ("!windows", True),
            ("!linux", False),
            ("(windows || linux) && !arm64", True),
            ("!(linux && docker)", False),
            ("linux&&docker", True),
            ("windows || linux && docker", True),
            ("", True),
        ],
    )
    def test_expressions(self, expr, expected):
        assert matches(expr, LINUX_DOCKER) is expected

    def test_and_binds_tighter_than_or(self):
        assert matches("docker || windows && mac", frozenset({"docker"}))
        assert not matches("(docker || windows) && mac", frozenset({"docker"}))

    @pytest.mark.parametrize("expr", ["linux &&", "&& linux", "(linux", "linux)", "linux docker", "a & b"])
    def test_malformed(self, expr):
        with pytest.raises(LabelExpressionError):
            matches(expr, LINUX_DOCKER)
