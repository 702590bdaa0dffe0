"""
Localization Module
===================
Authored patient-facing content for the consultation assistant, keyed by
language tag. Seven languages can be selected in the app, but only some of
them have authored content for every table. Anything missing resolves to
English deterministically.

Coverage is explicit: ``coverage()`` and ``is_fully_supported()`` report
which tables a language really has, so the UI can tell the patient when the
assistant will answer in English.
"""

from __future__ import annotations

import logging
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_LANGUAGE = "en"

# Languages offered by the language selector (display name, flag)
LANGUAGES: dict[str, dict] = {
    "en": {"name": "English", "flag": "🇺🇸"},
    "hi": {"name": "हिंदी", "flag": "🇮🇳"},
    "ta": {"name": "தமிழ்", "flag": "🇮🇳"},
    "te": {"name": "తెలుగు", "flag": "🇮🇳"},
    "bn": {"name": "বাংলা", "flag": "🇮🇳"},
    "kn": {"name": "ಕನ್ನಡ", "flag": "🇮🇳"},
    "mr": {"name": "मराठी", "flag": "🇮🇳"},
}

# Speech locales for recognition / synthesis. Languages without an entry
# use the English voice, matching the fallback of the text content.
SPEECH_LOCALES: dict[str, str] = {
    "en": "en-US",
    "hi": "hi-IN",
    "ta": "ta-IN",
}

# ---------------------------------------------------------------------------
# Classifier messages. ``{symptoms}`` is the patient's text, casing preserved.
# ---------------------------------------------------------------------------
EMERGENCY_MESSAGES: dict[str, str] = {
    "en": (
        "⚠️ EMERGENCY ALERT: Your symptoms suggest a serious medical emergency. "
        "Please call 108 immediately or go to the nearest emergency room. "
        "Do not delay seeking immediate medical attention."
    ),
    "hi": (
        "⚠️ आपातकालीन चेतावनी: आपके लक्षण गंभीर चिकित्सा आपातकाल का संकेत देते हैं। "
        "कृपया तुरंत 108 पर कॉल करें या निकटतम आपातकालीन कक्ष में जाएं।"
    ),
    "ta": (
        "⚠️ அவசர எச்சரிக்கை: உங்கள் அறிகுறிகள் கடுமையான மருத்துவ அவசரநிலையைக் குறிக்கின்றன। "
        "உடனடியாக 108 ஐ அழைக்கவும் அல்லது அருகிலுள்ள அவசர அறைக்குச் செல்லவும்।"
    ),
}

HIGH_URGENCY_MESSAGES: dict[str, str] = {
    "en": (
        "I understand you're experiencing {symptoms}. These symptoms require prompt "
        "medical attention. I recommend consulting with a healthcare provider within "
        "the next 24 hours. Let me ask you a few questions to better understand your "
        "condition."
    ),
    "hi": (
        "मैं समझता हूं कि आप {symptoms} का अनुभव कर रहे हैं। इन लक्षणों के लिए तत्काल "
        "चिकित्सा ध्यान की आवश्यकता है। मैं अगले 24 घंटों के भीतर एक स्वास्थ्य सेवा "
        "प्रदाता से सलाह लेने की सलाह देता हूं।"
    ),
    "ta": (
        "நீங்கள் {symptoms} அனுபவித்து வருவதை நான் புரிந்துகொள்கிறேன். இந்த அறிகுறிகளுக்கு "
        "உடனடி மருத்துவ கவனம் தேவை। அடுத்த 24 மணி நேரத்திற்குள் ஒரு சுகாதார வழங்குநரை "
        "அணுக பரிந்துரைக்கிறேன்।"
    ),
}

MEDIUM_URGENCY_MESSAGES: dict[str, str] = {
    "en": (
        "Thank you for sharing your symptoms: {symptoms}. While these symptoms are "
        "concerning, they don't appear to be immediately life-threatening. Let me "
        "gather more information to provide you with the best guidance."
    ),
    "hi": (
        "आपके लक्षण साझा करने के लिए धन्यवाद: {symptoms}। जबकि ये लक्षण चिंताजनक हैं, "
        "वे तुरंत जीवन-घातक नहीं लगते। आपको सबसे अच्छा मार्गदर्शन प्रदान करने के लिए "
        "मुझे और जानकारी एकत्र करने दें।"
    ),
    "ta": (
        "உங்கள் அறிகுறிகளைப் பகிர்ந்ததற்கு நன்றி: {symptoms}। இந்த அறிகுறிகள் "
        "கவலைக்குரியவை என்றாலும், அவை உடனடியாக உயிருக்கு ஆபத்தானவை அல்ல. உங்களுக்கு "
        "சிறந்த வழிகாட்டுதலை வழங்க மேலும் தகவல்களை சேகரிக்கிறேன்."
    ),
}

LOW_URGENCY_MESSAGES: dict[str, str] = {
    "en": (
        "I've noted your symptoms: {symptoms}. These appear to be mild symptoms that "
        "can often be managed with self-care. Let me ask you some questions to "
        "provide personalized recommendations."
    ),
    "hi": (
        "मैंने आपके लक्षणों को नोट किया है: {symptoms}। ये हल्के लक्षण प्रतीत होते हैं "
        "जिन्हें अक्सर स्व-देखभाल से प्रबंधित किया जा सकता है। व्यक्तिगत सिफारिशें "
        "प्रदान करने के लिए मुझे कुछ प्रश्न पूछने दें।"
    ),
    "ta": (
        "உங்கள் அறிகுறிகளை நான் குறித்துக்கொண்டேன்: {symptoms}। இவை பெரும்பாலும் "
        "சுய-பராமரிப்பால் நிர்வகிக்கப்படக்கூடிய லேசான அறிகுறிகளாகத் தோன்றுகின்றன. "
        "தனிப்பயனாக்கப்பட்ட பரிந்துரைகளை வழங்க சில கேள்விகளைக் கேட்கிறேன்."
    ),
}

# Follow-up questions per language and urgency. Tamil has none authored.
FOLLOW_UP_QUESTIONS: dict[str, dict[str, list[str]]] = {
    "en": {
        "high": [
            "When did these symptoms first start?",
            "On a scale of 1-10, how would you rate your pain or discomfort?",
            "Have you taken any medications for these symptoms?",
            "Do you have any known allergies or medical conditions?",
        ],
        "medium": [
            "How long have you been experiencing these symptoms?",
            "Have the symptoms gotten worse, better, or stayed the same?",
            "Are you currently taking any medications?",
            "Have you experienced anything like this before?",
        ],
        "low": [
            "When did you first notice these symptoms?",
            "What seems to make the symptoms better or worse?",
            "Are you getting enough rest and staying hydrated?",
            "Have you been under any unusual stress lately?",
        ],
    },
    "hi": {
        "high": [
            "ये लक्षण पहली बार कब शुरू हुए?",
            "1-10 के पैमाने पर, आप अपने दर्द या परेशानी को कैसे रेट करेंगे?",
            "क्या आपने इन लक्षणों के लिए कोई दवा ली है?",
            "क्या आपको कोई ज्ञात एलर्जी या चिकित्सा स्थितियां हैं?",
        ],
        "medium": [
            "आप कितने समय से इन लक्षणों का अनुभव कर रहे हैं?",
            "क्या लक्षण बदतर हुए हैं, बेहतर हुए हैं, या वही रहे हैं?",
            "क्या आप वर्तमान में कोई दवा ले रहे हैं?",
            "क्या आपने पहले कभी ऐसा कुछ अनुभव किया है?",
        ],
        "low": [
            "आपने पहली बार इन लक्षणों को कब नोटिस किया?",
            "क्या लगता है कि लक्षणों को बेहतर या बदतर बनाता है?",
            "क्या आप पर्याप्त आराम कर रहे हैं और हाइड्रेटेड रह रहे हैं?",
            "क्या आप हाल ही में किसी असामान्य तनाव में रहे हैं?",
        ],
    },
}

# Canned follow-up script, one line per turn, last line repeats.
CONVERSATION_SCRIPTS: dict[str, list[str]] = {
    "en": [
        "Thank you for that information. Can you tell me more about when these symptoms typically occur?",
        "I understand. Have you noticed any specific triggers that make your symptoms worse?",
        "That's helpful to know. Are you currently taking any medications or supplements?",
        "Based on what you've shared, I'd like to know if you've experienced anything similar before?",
        "I see. How would you describe your overall energy levels and sleep patterns recently?",
        "Thank you for the details. Have you made any recent changes to your diet or lifestyle?",
        "That's important information. Do you have any family history of similar conditions?",
        "I appreciate you sharing that. How has this been affecting your daily activities?",
        "Based on our conversation, I'm getting a clearer picture. Let me provide you with some recommendations.",
    ],
    "hi": [
        "उस जानकारी के लिए धन्यवाद। क्या आप मुझे बता सकते हैं कि ये लक्षण आमतौर पर कब होते हैं?",
        "मैं समझता हूं। क्या आपने कोई विशिष्ट ट्रिगर देखे हैं जो आपके लक्षणों को बदतर बनाते हैं?",
        "यह जानना उपयोगी है। क्या आप वर्तमान में कोई दवा या सप्लीमेंट ले रहे हैं?",
        "आपने जो साझा किया है उसके आधार पर, मैं जानना चाहूंगा कि क्या आपने पहले कभी ऐसा कुछ अनुभव किया है?",
        "मैं देख रहा हूं। आप हाल ही में अपने समग्र ऊर्जा स्तर और नींद के पैटर्न का वर्णन कैसे करेंगे?",
    ],
    "ta": [
        "அந்த தகவலுக்கு நன்றி। இந்த அறிகுறிகள் பொதுவாக எப்போது ஏற்படுகின்றன என்பதை மேலும் சொல்ல முடியுமா?",
        "நான் புரிந்துகொள்கிறேன். உங்கள் அறிகுறிகளை மோசமாக்கும் குறிப்பிட்ட தூண்டுதல்களை நீங்கள் கவனித்திருக்கிறீர்களா?",
        "அது தெரிந்துகொள்ள உதவியாக இருக்கிறது। நீங்கள் தற்போது ஏதேனும் மருந்துகள் அல்லது சப்ளிமெண்ட்ஸ் எடுத்துக்கொண்டிருக்கிறீர்களா?",
        "நீங்கள் பகிர்ந்ததின் அடிப்படையில், இதுபோன்ற ஏதாவது முன்பு அனுபவித்திருக்கிறீர்களா என்பதை அறிய விரும்புகிறேன்?",
    ],
}

# ``{health_type}`` is "physical" or "mental".
GREETINGS: dict[str, str] = {
    "en": (
        "Hello! I'm your AI health assistant. I understand you're experiencing "
        "{health_type} health concerns. Please describe your symptoms in detail, and "
        "I'll help analyze them and provide guidance. You can speak or type in your "
        "preferred language."
    ),
}

CLOSING_MESSAGES: dict[str, str] = {
    "en": (
        "Thank you for providing all this information. I have enough details to "
        "provide you with a comprehensive assessment and recommendations. Would you "
        "like to proceed to get your results?"
    ),
}

_TABLES: dict[str, dict] = {
    "emergency_message": EMERGENCY_MESSAGES,
    "high_urgency_message": HIGH_URGENCY_MESSAGES,
    "medium_urgency_message": MEDIUM_URGENCY_MESSAGES,
    "low_urgency_message": LOW_URGENCY_MESSAGES,
    "follow_up_questions": FOLLOW_UP_QUESTIONS,
    "conversation_script": CONVERSATION_SCRIPTS,
    "greeting": GREETINGS,
    "closing_message": CLOSING_MESSAGES,
}

TABLE_NAMES: tuple[str, ...] = tuple(_TABLES)


def normalize_language(language: Optional[str]) -> str:
    """Reduce a language tag to its lowercase base code.

    ``'hi-IN'`` and ``'hi_IN'`` become ``'hi'``; an empty tag becomes English.
    """
    if not language:
        return DEFAULT_LANGUAGE
    return language.replace("_", "-").split("-")[0].strip().lower() or DEFAULT_LANGUAGE


def resolve(table: str, language: Optional[str]):
    """Return the entry of ``table`` for ``language``, falling back to English.

    Args:
        table: One of ``TABLE_NAMES``.
        language: Any language tag.

    Returns:
        The authored entry for the language, or the English entry.

    Raises:
        KeyError: If ``table`` is not a known table name.
    """
    entries = _TABLES[table]
    lang = normalize_language(language)
    if lang in entries:
        return entries[lang]
    logger.debug("No '%s' content for language '%s'; using English.", table, lang)
    return entries[DEFAULT_LANGUAGE]


def coverage(language: Optional[str]) -> dict[str, bool]:
    """Report, per content table, whether the language has authored content."""
    lang = normalize_language(language)
    return {name: lang in entries for name, entries in _TABLES.items()}


def is_fully_supported(language: Optional[str]) -> bool:
    """True only if every content table is authored for the language."""
    return all(coverage(language).values())


def is_selectable(language: Optional[str]) -> bool:
    """True if the language is offered by the language selector."""
    return normalize_language(language) in LANGUAGES


def fallback_tables(language: Optional[str]) -> list[str]:
    """Names of the tables that will be served in English for this language."""
    return [name for name, authored in coverage(language).items() if not authored]


def speech_locale(language: Optional[str]) -> str:
    """BCP-47 locale used for speech recognition and synthesis."""
    return SPEECH_LOCALES.get(normalize_language(language), SPEECH_LOCALES[DEFAULT_LANGUAGE])


def get_language_name(language: Optional[str]) -> str:
    """Display name for a language tag (the tag itself if unknown)."""
    lang = normalize_language(language)
    return LANGUAGES.get(lang, {}).get("name", lang)
