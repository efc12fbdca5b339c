from __future__ import annotations

import sys
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from crow_bot.engine.addressing import is_direct_address  # noqa: E402
from crow_bot.engine.context import (  # noqa: E402
    best_display_name,
    clean_display_name,
    extract_pronouns,
    format_context,
    split_gateway_message,
    strip_irc_codes,
)
from crow_bot.engine.substitution import Candidate, apply_substitution, parse_substitution  # noqa: E402
from crow_bot.engine.triggers import (  # noqa: E402
    CRIME_FIGHTING_DUO,
    load_keyword_triggers,
    match_keyword,
    parse_command,
    short_circuit_reply,
)
from crow_bot.prompts.templates import PromptBuilder, usable_reply  # noqa: E402


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("Crow, help", True),
        ("crow what's the weather", True),
        ("hey crow", True),
        ("thanks crow!", True),
        ("@crow are you there", True),
        ("what do you think, crow?", True),
        ("please crow tell me a joke", True),
        ("CROW: status report", True),
        ("tell me a joke crow", True),
        ("please write a short poem crow!", True),
        ("this is a nice crow", False),
        ("a crow landed on my car", False),
        ("can you see the crow", False),
        ("look at that big crow", False),
        ("I like crow better than pigeons", False),
        ("crow is the best bot", False),
        ("that's crow's job", False),
        ("scarecrow season", False),
        ("the crows are loud today", False),
        ("", False),
    ],
)
def test_direct_address_seed_table(text: str, expected: bool) -> None:
    assert is_direct_address(text, "Crow") is expected


@pytest.mark.parametrize("text", ["whoa", "  WHOA  ", "Woah!", "whoa..."])
def test_whoa_alone_knows_kung_fu(text: str) -> None:
    assert short_circuit_reply(text) == "I know kung fu!"


def test_whoa_inside_a_sentence_is_not_a_short_circuit() -> None:
    assert short_circuit_reply("whoa that was close") is None


def test_phrase_short_circuits() -> None:
    assert short_circuit_reply("But Lisa needs braces!") == "DENTAL PLAN!"
    assert short_circuit_reply("ugh my spoon is too big") == "I am a banana!"
    assert short_circuit_reply("so WHO FIGHTS CRIME tonight?") == CRIME_FIGHTING_DUO
    assert short_circuit_reply("nothing to see here") is None


def test_keyword_triggers_require_every_keyword(tmp_path: Path) -> None:
    path = tmp_path / "triggers.json"
    path.write_text(
        '[{"keywords": ["pizza", "pineapple"], "reply": "{bot_name} says no."}, {"keywords": [], "reply": "x"}]',
        encoding="utf-8",
    )
    triggers = load_keyword_triggers(path, "Crow")

    assert len(triggers) == 1
    assert match_keyword("Pineapple on PIZZA?", triggers) == "Crow says no."
    assert match_keyword("pizza please", triggers) is None


def test_missing_trigger_file_uses_defaults(tmp_path: Path) -> None:
    triggers = load_keyword_triggers(tmp_path / "missing.json", "Crow")
    assert match_keyword("is this a discord bot?", triggers) == "Yes, I'm a Discord bot! My name is Crow!"


def test_parse_command_keeps_raw_args() -> None:
    command = parse_command("!Quote  -show  Simpsons  steamed hams")
    assert command is not None
    assert command.name == "quote"
    assert command.has_flag("-show")
    assert command.option("-show") == "Simpsons"
    assert command.raw_args == "-show  Simpsons  steamed hams"
    assert parse_command("!") is None
    assert parse_command("hello") is None


def test_substitution_meant_then_really_meant() -> None:
    first = apply_substitution("s/foo/bar/", [Candidate("Alice (she/her)", "the foo is good")])
    assert first == "Alice meant: the bar is good"

    second = apply_substitution(
        "s/is/was/",
        [
            Candidate("Crow", first, from_bot=True),
            Candidate("Bob", "s/foo/bar/"),
            Candidate("Alice", "the foo is good"),
        ],
    )
    assert second == "Alice *really* meant: the bar was good"

    third = apply_substitution("s/bar/baz/", [Candidate("Crow", second, from_bot=True)])
    assert third == "Alice *really* *really* meant: the baz was good"


def test_substitution_skips_commands_and_unchanged_candidates() -> None:
    prior = [
        Candidate("Bob", "!quote"),
        Candidate("Carol", "nothing to change"),
        Candidate("Dave", "colour me surprised"),
    ]
    assert apply_substitution("s/colour/color/", prior) == "Dave meant: color me surprised"


def test_substitution_only_looks_four_messages_back() -> None:
    prior = [Candidate(f"user{i}", "filler") for i in range(4)] + [Candidate("old", "target")]
    assert apply_substitution("s/target/hit/", prior) is None


def test_substitution_supports_flags_groups_and_alt_prefixes() -> None:
    prior = [Candidate("Bob", "Hello World")]
    assert apply_substitution("s/world/there/i", prior) == "Bob meant: Hello there"
    assert apply_substitution("./s/(\\w+) (\\w+)/$2 $1/", prior) == "Bob meant: World Hello"
    assert apply_substitution("!/Hello/Goodbye/", prior) == "Bob meant: Goodbye World"
    assert parse_substitution("s/(unclosed/x/") is None


def test_substitution_never_changes_urls() -> None:
    prior = [Candidate("Bob", "read https://example.com/page about example")]
    assert apply_substitution("s/example/sample/", prior) is None
    assert apply_substitution("s/read/see/", prior) == "Bob meant: see https://example.com/page about example"


def test_display_name_cleanup_and_pronouns() -> None:
    assert clean_display_name("Alice (she/her)") == "Alice"
    assert clean_display_name("\x0304Bob\x0f [he/him]") == "Bob"
    assert extract_pronouns("Alice (She/Her)") == "she/her"
    assert extract_pronouns("Alice") is None
    assert strip_irc_codes("\x02bold\x02 Alice (they/them)") == "bold Alice (they/them)"
    assert best_display_name("alice99", "Alice", None) == "Alice"
    assert best_display_name("alice99", None, "  ") == "alice99"


def test_gateway_relay_split() -> None:
    relayed = split_gateway_message("[irc] <Dave (he/him)> hello from irc")
    assert relayed is not None
    assert relayed.nick == "Dave (he/him)"
    assert relayed.content == "hello from irc"
    assert split_gateway_message("<@1234> hi") is None
    assert split_gateway_message("plain message") is None


def test_format_context_labels_replies_and_collapses_repeats() -> None:
    rows = [
        {"author": "alice", "display_name": "Alice (she/her)", "content": "lol"},
        {"author": "bob", "display_name": "Bob", "content": "where are my keys"},
        {
            "author": "carol",
            "display_name": "Carol",
            "content": "under the couch",
            "ref_display_name": "Bob",
            "ref_content": "where are my keys",
        },
        {"author": "dave", "display_name": None, "content": "lol"},
    ]
    assert format_context(rows) == (
        "Bob: where are my keys\n"
        "Carol (replying to Bob: where are my keys): under the couch\n"
        "dave: lol"
    )


def test_empty_history_renders_empty_context_slot() -> None:
    prompts = PromptBuilder(bot_name="Crow")
    prompt = prompts.general_response("Alice", "what's 2+2?", format_context([]))

    assert "No context" not in prompt
    assert prompt.endswith("Recent conversation context:\n")
    assert "{context}" not in prompt


def test_usable_reply_drops_pass_and_prompt_echoes() -> None:
    assert usable_reply("  PASS.") == ""
    assert usable_reply("Guidelines: be funny") == ""
    assert usable_reply(None) == ""
    assert usable_reply(" Four. ") == "Four."
