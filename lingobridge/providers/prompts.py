"""
Prompts shared by the LLM-backed providers.
"""

from typing import Optional

from lingobridge.utils.constants import AUTO_LANGUAGE


LANGUAGE_NAMES = {
    "ar": "Arabic", "bg": "Bulgarian", "bn": "Bengali", "cs": "Czech", "da": "Danish",
    "de": "German", "el": "Greek", "en": "English", "es": "Spanish", "et": "Estonian",
    "fi": "Finnish", "fr": "French", "hi": "Hindi", "hu": "Hungarian", "id": "Indonesian",
    "it": "Italian", "ja": "Japanese", "ko": "Korean", "lt": "Lithuanian", "lv": "Latvian",
    "ms": "Malay", "nb": "Norwegian Bokmål", "nl": "Dutch", "no": "Norwegian", "pl": "Polish",
    "pt": "Portuguese", "ro": "Romanian", "ru": "Russian", "sk": "Slovak", "sl": "Slovenian",
    "sv": "Swedish", "ta": "Tamil", "th": "Thai", "tr": "Turkish", "uk": "Ukrainian",
    "vi": "Vietnamese", "zh": "Chinese",
}

LANGUAGE_DETECTION_PROMPT = (
    "You are a language detection expert. "
    "Respond only with the ISO 639-1 language code (e.g. \"en\", \"fr\", \"es\")."
)


def language_name(code: str) -> str:
    base = code.split("-", 1)[0]
    return LANGUAGE_NAMES.get(base, code)


def build_translation_system_prompt(source_lang: str, target_lang: str, context: Optional[str] = None) -> str:
    if source_lang == AUTO_LANGUAGE:
        prompt = f"You are a professional translator. Translate the user's message into {language_name(target_lang)}."
    else:
        prompt = (
            f"You are an expert translator specializing in {language_name(source_lang)} "
            f"to {language_name(target_lang)} translation."
        )

    prompt += (
        "\nRules:"
        "\n1. Preserve the original meaning and tone"
        "\n2. Maintain formatting (line breaks, punctuation, emojis)"
        "\n3. Keep technical terms, URLs and code snippets unchanged"
        "\n4. Preserve @mentions and #hashtags"
        "\n5. Output only the translation, without explanations or notes"
    )

    if context:
        prompt += f"\n\nConversation context (do not translate, use it only to disambiguate):\n{context}"

    return prompt


def build_detection_user_prompt(text: str) -> str:
    return f"Detect the language of this text: \"{text[:500]}\""


def parse_detected_code(raw: Optional[str]) -> Optional[str]:
    """Accept 'en', 'EN', '"en"', 'en.' and 'zh-TW'; reject anything else."""
    if not raw:
        return None
    code = raw.strip().strip("\"'.").lower()
    base = code.split("-", 1)[0]
    if len(base) == 2 and base.isalpha():
        return base
    return None
