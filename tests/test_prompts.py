from paarth_server.prompts import ANSWER_INSTRUCTIONS, build_prompt
from paarth_server.sessions.models import Turn

from conftest import make_verse


def _turns(*questions):
    return [Turn(user_text=q, assistant_text="उत्तर") for q in questions]


def test_prompt_is_deterministic():
    verses = [make_verse("bg_2_47", detailed_explanation="विस्तार")]
    turns = _turns("पहला")

    assert build_prompt("क्या करूँ?", verses, turns) == build_prompt("क्या करूँ?", verses, turns)


def test_prompt_layout_order():
    verses = [
        make_verse("bg_2_47", chapter=2, verse=47),
        make_verse("bg_6_5", chapter=6, verse=5, detailed_explanation="मन ही मित्र है"),
    ]

    prompt = build_prompt("मुझे चिंता है", verses, _turns("पिछला सवाल"))

    assert prompt.startswith("प्रश्न: मुझे चिंता है\n\n")
    assert prompt.index("अध्याय 2, श्लोक 47:") < prompt.index("अध्याय 6, श्लोक 5:")
    assert "विस्तृत व्याख्या: मन ही मित्र है" in prompt
    assert prompt.index("अध्याय 6, श्लोक 5:") < prompt.index("पिछली बातचीत का संदर्भ:")
    assert prompt.endswith(ANSWER_INSTRUCTIONS)


def test_prompt_uses_last_two_turns_only():
    prompt = build_prompt("नया", [], _turns("एक", "दो", "तीन"))

    assert "प्रश्न: एक\n" not in prompt
    assert "प्रश्न: दो\n" in prompt
    assert "प्रश्न: तीन\n" in prompt


def test_prompt_without_verses_or_history():
    prompt = build_prompt("नमस्ते", [], [])

    assert "संबंधित गीता श्लोक" not in prompt
    assert "पिछली बातचीत" not in prompt
    assert prompt == "प्रश्न: नमस्ते\n\n" + ANSWER_INSTRUCTIONS


def test_history_window_zero_disables_context():
    prompt = build_prompt("नया", [], _turns("एक"), history_window=0)

    assert "पिछली बातचीत" not in prompt
