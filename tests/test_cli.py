"""Tests for the command line scripts."""

import pytest

import bip39_derive
import vanity_principal
from icp_keys import EntropySourceError, principal_from_privbytes
from vanity_search import SearchResult

ZERO_MNEMONIC = " ".join(["abandon"] * 11 + ["about"])


@pytest.fixture
def fake_search(monkeypatch):
    """Replace the real search with one that returns immediately."""
    calls = []

    def fake(prefix, observer=None, **kwargs):
        calls.append(prefix)
        return SearchResult(
            principal=prefix + "xx-yyyyy",
            mnemonic="abandon ability able",
            secret_key=b"\x01" * 32,
            iterations=1234,
            elapsed=2.0,
        )

    monkeypatch.setattr(vanity_principal, "search", fake)
    return calls


# =============================================================================
# ARGUMENT PARSING
# =============================================================================


@pytest.mark.parametrize(
    "value, expected",
    [("3", 3), ("12", 12), ("3abc", 3), (" 7", 7), ("abc", 1), ("", 1), (None, 1), ("0", 1), ("-2", 1)],
)
def test_parse_count(value, expected):
    assert vanity_principal.parse_count(value) == expected


def test_parse_args_defaults():
    assert vanity_principal.parse_args([]) == ("aaaaa", 1, 1, False)


def test_parse_args_positional():
    assert vanity_principal.parse_args(["abc", "2"]) == ("abc", 2, 1, False)


def test_parse_args_empty_prefix_uses_default():
    assert vanity_principal.parse_args(["", "2"]) == ("aaaaa", 2, 1, False)


def test_parse_args_options():
    assert vanity_principal.parse_args(["-j", "4", "-v", "abc"]) == ("abc", 1, 4, True)
    assert vanity_principal.parse_args(["--workers=3", "abc", "x"]) == ("abc", 1, 3, False)


# =============================================================================
# vanity_principal.main
# =============================================================================


def test_help_exits_without_search(capsys, fake_search):
    vanity_principal.main(["--help"])

    assert "Usage:" in capsys.readouterr().out
    assert fake_search == []


def test_short_help(capsys, fake_search):
    vanity_principal.main(["abc", "-h"])

    assert "ICP Vanity Address Generator" in capsys.readouterr().out
    assert fake_search == []


def test_single_search_output(capsys, fake_search):
    vanity_principal.main(["abc"])

    out = capsys.readouterr().out
    assert fake_search == ["abc"]
    assert "Searching for ICP Principal with prefix: 'abc'" in out
    assert "Estimated attempts needed: ~32,768" in out
    assert "MATCH FOUND after 1,234 iterations!" in out
    assert "Time elapsed: 2.00s" in out
    assert "Principal: abcxx-yyyyy" in out
    assert "Mnemonic: abandon ability able" in out
    assert "Rate: 617 attempts/second" in out
    assert "01" * 32 not in out


def test_multiple_searches_output(capsys, fake_search):
    vanity_principal.main(["ab", "2"])

    out = capsys.readouterr().out
    assert fake_search == ["ab", "ab"]
    assert "Generating 2 vanity address(es) with prefix: 'ab'" in out
    assert "--- Generating address 1/2 ---" in out
    assert "--- Generating address 2/2 ---" in out
    assert out.count("=" * 50) == 1


def test_invalid_count_falls_back_to_one(capsys, fake_search):
    vanity_principal.main(["ab", "many"])

    assert fake_search == ["ab"]


def test_impossible_prefix_is_rejected(capsys, fake_search):
    with pytest.raises(SystemExit) as exc:
        vanity_principal.main(["aaaaaa"])

    assert exc.value.code == 1
    assert "must be '-'" in capsys.readouterr().err
    assert fake_search == []


def test_entropy_failure_exits_with_error(capsys, monkeypatch):
    def broken(prefix, **kwargs):
        raise EntropySourceError("secure random source unavailable")

    monkeypatch.setattr(vanity_principal, "search", broken)

    with pytest.raises(SystemExit) as exc:
        vanity_principal.main(["abc"])

    assert exc.value.code == 1
    assert "Error: secure random source unavailable" in capsys.readouterr().err


def test_workers_use_parallel_search(capsys, monkeypatch):
    seen = {}

    def fake_parallel(prefix, workers=None, observer=None, **kwargs):
        seen.update(prefix=prefix, workers=workers)
        return SearchResult("abcde-fghij", "words", b"", iterations=10, elapsed=1.0)

    monkeypatch.setattr(vanity_principal, "search_parallel", fake_parallel)

    vanity_principal.main(["-j", "4", "abc"])

    assert seen == {"prefix": "abc", "workers": 4}
    assert "Using 4 worker processes" in capsys.readouterr().out


# =============================================================================
# bip39_derive.main
# =============================================================================


def test_derive_prints_identity(capsys):
    bip39_derive.main(ZERO_MNEMONIC.split())

    out = capsys.readouterr().out
    assert "Derivation path: m/44h/223h/0h/0/0" in out
    assert f"Mnemonic:  {ZERO_MNEMONIC}" in out

    secret_hex = out.split("Secret key (hex): ")[1].split()[0]
    principal = principal_from_privbytes(bytes.fromhex(secret_hex))
    assert f"Principal: {principal}" in out


def test_derive_rejects_bad_checksum(capsys):
    with pytest.raises(SystemExit) as exc:
        bip39_derive.main(["abandon"] * 12)

    assert exc.value.code == 1
    assert "checksum failed" in capsys.readouterr().out


def test_derive_usage(capsys):
    with pytest.raises(SystemExit) as exc:
        bip39_derive.main([])

    assert exc.value.code == 1
    assert "Usage:" in capsys.readouterr().out
