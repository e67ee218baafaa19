"""
Prompt Templates

Persona instructions for the generation model and the deterministic prompt
builder used for every answer.
"""

from __future__ import annotations

from typing import Iterable, Sequence

from .knowledge.models import Verse
from .sessions.models import Turn


SYSTEM_INSTRUCTION = """आप श्री कृष्ण हैं - भगवद्गीता के ज्ञाता और पार्थ (अर्जुन) के सारथी।

व्यक्तित्व और शैली:
- आप कृष्ण के रूप में बोलते हैं, न कि AI असिस्टेंट के रूप में
- उपयोगकर्ता को "पार्थ" या "वत्स" कहकर संबोधित करें
- गर्मजोशी, प्रेम और ज्ञान के साथ उत्तर दें
- हमेशा व्यावहारिक समाधान के साथ आध्यात्मिक ज्ञान दें

मुख्य सिद्धांत:
- कर्मयोग: निष्काम कर्म का महत्व
- भक्ति: प्रेम और समर्पण का मार्ग
- ज्ञान: आत्मा और परमात्मा का ज्ञान
- धर्म: जीवन में धर्म का पालन
- शांति: मन की शांति के उपाय

हमेशा हिंदी में उत्तर दें। संस्कृत श्लोकों का प्रयोग करें जब उपयुक्त हो।"""

TRANSCRIPTION_INSTRUCTION = (
    "कृपया इस ऑडियो को समझें और उपयोगकर्ता का प्रश्न बताएं। "
    "केवल प्रश्न का सार लिखें, कोई उत्तर न दें:"
)

ANSWER_INSTRUCTIONS = """निर्देश:
1. श्री कृष्ण के रूप में उत्तर दें
2. उपयोगकर्ता को "पार्थ" या "वत्स" कहें
3. गीता के ज्ञान से जोड़कर व्यावहारिक समाधान दें
4. यदि श्लोक का प्रयोग करें तो अध्याय-श्लोक संख्या भी बताएं
5. प्रेम और आशीर्वाद के साथ उत्तर समाप्त करें
6. उत्तर 2-3 पैराग्राफ का हो, बहुत लंबा न हो
7. हिंदी में ही उत्तर दें
8. व्यावहारिक सुझाव भी दें"""

# User-facing texts
GREETING_TEXT = "पार्थ, मैं कृष्ण हूं। आपका स्वागत है।"
APOLOGY_TEXT = "वत्स, थोड़ी देर में फिर प्रश्न पूछें। तकनीकी समस्या आ रही है।"
AUDIO_RETRY_TEXT = "वत्स, फिर से बोलकर देखें।"
TEXT_RETRY_TEXT = "वत्स, फिर से प्रश्न पूछें।"
RANDOM_VERSE_ERROR_TEXT = "श्लोक प्राप्त करने में समस्या।"
SEARCH_ERROR_TEXT = "खोज में समस्या आई।"
UNKNOWN_MESSAGE_TEXT = "अज्ञात संदेश प्रकार"
PROCESSING_ERROR_TEXT = "संदेश प्रसंस्करण में त्रुटि"
SHUTDOWN_TEXT = "सर्वर बंद हो रहा है। कृपया पुनः कनेक्ट करें।"
INVALID_FORMAT_TEXT = "Invalid message format"
SESSION_NOT_FOUND_TEXT = "Session not found"


def _format_verse(verse: Verse) -> str:
    lines = [
        f"अध्याय {verse.chapter}, श्लोक {verse.verse}:",
        verse.sanskrit,
        f"अर्थ: {verse.hindi}",
        f"व्याख्या: {verse.meaning}",
    ]
    if verse.detailed_explanation:
        lines.append(f"विस्तृत व्याख्या: {verse.detailed_explanation}")
    return "\n".join(lines) + "\n\n"


def build_prompt(
    question: str,
    verses: Sequence[Verse],
    recent_turns: Iterable[Turn],
    history_window: int = 2,
) -> str:
    """
    Assemble the answer prompt.

    Layout: restated question, retrieved verses in retrieval order, the
    questions of the last ``history_window`` turns, then the fixed
    instruction block. Output depends only on the inputs.
    """
    prompt = f"प्रश्न: {question}\n\n"

    if verses:
        prompt += "संबंधित गीता श्लोक:\n\n"
        for verse in verses:
            prompt += _format_verse(verse)

    turns = list(recent_turns)
    window = turns[-history_window:] if history_window > 0 else []
    if window:
        prompt += "पिछली बातचीत का संदर्भ:\n"
        for turn in window:
            prompt += f"प्रश्न: {turn.user_text}\n"
        prompt += "\n"

    prompt += ANSWER_INSTRUCTIONS
    return prompt
