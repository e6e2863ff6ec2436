import pytest

from mbdist.modules.errors import ErrorCode, InvalidBuildFlags
from mbdist.modules.flags import flags_as_argv, read_args, split_like_shell, translate


def test_translate_key_value_pairs() -> None:
    assert translate("foo=bar baz=qux") == {"foo": "bar", "baz": "qux"}


def test_translate_empty_input_is_empty_mapping() -> None:
    assert translate("") == {}
    assert translate(None) == {}
    assert translate("   ") == {}


def test_translate_keeps_quoted_values_whole() -> None:
    assert translate('install_base="/opt/my perl" --config "cc=gcc -O2"') == {
        "install_base": "/opt/my perl",
        "config": "cc=gcc -O2",
    }


def test_translate_long_options_take_next_token() -> None:
    assert translate("--install_base /opt/perl --verbose") == {"install_base": "/opt/perl", "verbose": "1"}


def test_translate_repeated_keys_become_lists() -> None:
    assert translate("--config a=1 --config b=2") == {"config": ["a=1", "b=2"]}


def test_translate_dashes_become_underscores() -> None:
    assert translate("--install-base /tmp/x") == {"install_base": "/tmp/x"}


def test_translate_dashed_key_value_names() -> None:
    assert translate("install-base=/opt/perl --install-path lib=/x") == {
        "install_base": "/opt/perl",
        "install_path": "lib=/x",
    }


def test_translate_unbalanced_quotes_is_a_coded_error() -> None:
    with pytest.raises(InvalidBuildFlags) as exc:
        translate('install_base="/opt/perl')
    assert exc.value.code is ErrorCode.INVALID_BUILD_FLAGS


def test_read_args_first_bare_word_is_action() -> None:
    args, action = read_args(["test", "verbose=1", "extra", "more"])
    assert action == "test"
    assert args == {"verbose": "1", "ARGV": ["extra", "more"]}


def test_split_like_shell_honors_quotes() -> None:
    assert split_like_shell("a 'b c' \"d e\"") == ["a", "b c", "d e"]


def test_flags_as_argv_repeats_lists_and_appends_argv() -> None:
    argv = flags_as_argv({"install_base": "/opt", "config": ["a=1", "b=2"], "ARGV": ["x"]})
    assert argv == ["--install_base", "/opt", "--config", "a=1", "--config", "b=2", "x"]
