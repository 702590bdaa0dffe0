"""
Patient Consultation App - MedConsult
=====================================
Multilingual patient-facing symptom consultation.
Flow: health type -> vitals (optional) -> AI chat -> results.

Voice input uses the browser microphone (st.audio_input) and Azure Speech.
Without Speech credentials the chat runs in text-only mode.

Run: streamlit run ui/patient_app.py
"""

import asyncio
import hashlib
import logging
import sys
from pathlib import Path

import streamlit as st

# ---------------------------------------------------------------------------
# Project root on sys.path
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from medconsult import localization
from medconsult.care_directory import CareDirectory, build_results, report_text
from medconsult.conversation import (
    HEALTH_MENTAL,
    HEALTH_PHYSICAL,
    PHASE_HALTED_EMERGENCY,
    ROLE_AI,
    ConversationDriver,
    ConversationSettings,
)
from medconsult.speech_handler import (
    SPEECH_UNAVAILABLE_ADVISORY,
    NullSpeech,
    RecordedAudioInput,
    SpeechHandler,
)
from medconsult.symptom_classifier import URGENCY_COLORS
from medconsult.vitals import (
    BMI_COLORS,
    VITAL_RANGES,
    VITALS_TIPS,
    bmi_category,
    calculate_bmi,
    parse_vitals,
    validate_vitals,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Page configuration
# ---------------------------------------------------------------------------
st.set_page_config(
    page_title="MedConsult",
    page_icon="🩺",
    layout="centered",
)

st.markdown(
    """
<style>
.block-container { max-width: 760px; }
.stButton > button {
    min-height: 50px;
    font-size: 1.05rem;
    border-radius: 10px;
}
</style>
""",
    unsafe_allow_html=True,
)

VITAL_LABELS = {
    "blood_pressure_systolic": "Systolic BP (mmHg)",
    "blood_pressure_diastolic": "Diastolic BP (mmHg)",
    "blood_sugar": "Blood Sugar (mg/dL)",
    "heart_rate": "Heart Rate (bpm)",
    "weight": "Weight (kg)",
    "height": "Height (cm)",
}


# ---------------------------------------------------------------------------
# Service loader with startup status tracking
# ---------------------------------------------------------------------------
@st.cache_resource
def load_services() -> tuple:
    """Initialize shared services.

    Returns:
        Tuple of (speech capability, CareDirectory, ConversationSettings,
        dict[service_name, bool]).
    """
    status: dict[str, bool] = {}

    try:
        handler = SpeechHandler()
        status["Azure Speech"] = handler.is_available()
    except Exception as exc:
        logger.error("Speech handler failed to load: %s", exc)
        handler = None
        status["Azure Speech"] = False
    speech = handler if status["Azure Speech"] else NullSpeech()

    directory = CareDirectory.from_env()
    status["Care Directory (file)"] = not directory.is_demo

    return speech, directory, ConversationSettings.from_env(), status


speech, care_directory, consult_settings, _svc_status = load_services()

# ---------------------------------------------------------------------------
# Session state defaults
# ---------------------------------------------------------------------------
_DEFAULTS: dict = dict(
    step="health_type",
    language=localization.DEFAULT_LANGUAGE,
    health_type=None,
    vitals=None,
    driver=None,
    results=None,
    last_audio_digest=None,
    auto_speak=False,
)
for _key, _val in _DEFAULTS.items():
    if _key not in st.session_state:
        st.session_state[_key] = _val


def reset() -> None:
    """Close any running consultation and reset session state."""
    driver = st.session_state.get("driver")
    if driver is not None:
        driver.close()
    language = st.session_state.language
    for key, val in _DEFAULTS.items():
        st.session_state[key] = val
    st.session_state.language = language


# ---------------------------------------------------------------------------
# Driver helpers (each Streamlit run drives the async session to rest)
# ---------------------------------------------------------------------------
async def _submit_and_settle(driver: ConversationDriver, text: str) -> bool:
    accepted = await driver.submit(text)
    await driver.drain()
    return accepted


async def _capture_and_settle(driver: ConversationDriver, source: RecordedAudioInput) -> bool:
    accepted = await driver.capture_voice(source)
    await driver.drain()
    return accepted


def submit(text: str) -> None:
    driver: ConversationDriver = st.session_state.driver
    with st.spinner("Analyzing..."):
        accepted = asyncio.run(_submit_and_settle(driver, text))
    if not accepted:
        logger.info("Message not accepted in phase %s.", driver.phase)
    st.rerun()


def submit_recording(audio) -> None:
    """Recognize a browser recording and submit it as a voice message.

    Args:
        audio: Streamlit audio upload object with .getvalue() and .type.
    """
    driver: ConversationDriver = st.session_state.driver
    source = RecordedAudioInput(speech, audio.getvalue(), getattr(audio, "type", "audio/wav"))
    with st.spinner("Listening..."):
        accepted = asyncio.run(_capture_and_settle(driver, source))
    if not accepted:
        logger.info("Recording not submitted in phase %s.", driver.phase)
    st.rerun()


def start_consultation() -> None:
    driver = ConversationDriver(
        st.session_state.health_type,
        st.session_state.language,
        settings=consult_settings,
        speech_input=speech,
        speech_output=speech,
        auto_speak=st.session_state.auto_speak,
    )
    driver.start()
    st.session_state.driver = driver
    st.session_state.step = "chat"


# ---------------------------------------------------------------------------
# STEP 1: HEALTH TYPE
# ---------------------------------------------------------------------------
def page_health_type() -> None:
    st.title("🩺 MedConsult")
    st.caption("Describe your symptoms by voice or text and get guidance.")

    st.subheader("What kind of health concern do you have?")
    col1, col2 = st.columns(2)
    with col1:
        if st.button("🫀 Physical Health", use_container_width=True, key="ht_physical"):
            st.session_state.health_type = HEALTH_PHYSICAL
            st.session_state.step = "vitals"
            st.rerun()
        st.caption("Pain, fever, injuries, infections")
    with col2:
        if st.button("🧠 Mental Health", use_container_width=True, key="ht_mental"):
            st.session_state.health_type = HEALTH_MENTAL
            st.session_state.step = "vitals"
            st.rerun()
        st.caption("Stress, anxiety, sleep, mood")


# ---------------------------------------------------------------------------
# STEP 2: VITALS (optional)
# ---------------------------------------------------------------------------
def page_vitals() -> None:
    st.title("📋 Health Vitals")
    st.caption("Optional. Your vitals help us understand your condition better.")

    with st.form("vitals_form"):
        form: dict[str, str] = {}
        col1, col2 = st.columns(2)
        for i, field in enumerate(VITAL_RANGES):
            with (col1 if i % 2 == 0 else col2):
                form[field] = st.text_input(VITAL_LABELS[field], key=f"vital_{field}")
        submitted = st.form_submit_button("Save Vitals", type="primary", use_container_width=True)

    if submitted:
        errors = validate_vitals(form)
        if errors:
            for message in errors.values():
                st.error(message)
        else:
            st.session_state.vitals = parse_vitals(form)
            start_consultation()
            st.rerun()

    try:
        bmi = calculate_bmi(float(form["weight"]), float(form["height"]))
    except ValueError:
        bmi = None
    if bmi is not None:
        category = bmi_category(bmi)
        st.metric("BMI", f"{bmi:.1f}", f"{BMI_COLORS[category]} {category}", delta_color="off")

    with st.expander("💡 Health Tips"):
        for tip in VITALS_TIPS:
            st.markdown(f"- {tip}")

    if st.button("Skip vitals", use_container_width=True, key="skip_vitals"):
        start_consultation()
        st.rerun()


# ---------------------------------------------------------------------------
# STEP 3: CHAT
# ---------------------------------------------------------------------------
def page_chat() -> None:
    driver: ConversationDriver = st.session_state.driver

    st.title("💬 AI Consultation")
    st.caption(
        f"{st.session_state.health_type.title()} health · "
        f"{localization.get_language_name(driver.language)}"
    )
    if not localization.is_fully_supported(driver.language):
        st.info("Some replies will be in English for this language.")

    vitals = st.session_state.vitals
    if vitals:
        with st.expander("📋 Your Vitals"):
            st.markdown(
                f"BP: {vitals.blood_pressure_systolic:.0f}/{vitals.blood_pressure_diastolic:.0f} mmHg · "
                f"Sugar: {vitals.blood_sugar:.0f} mg/dL · HR: {vitals.heart_rate:.0f} bpm · "
                f"BMI: {vitals.bmi:.1f}"
            )

    for message in driver.transcript:
        with st.chat_message("assistant" if message.role == ROLE_AI else "user"):
            st.markdown(message.content)
            if message.role == ROLE_AI and speech.is_available():
                if st.button("🔊", key=f"speak_{message.id}"):
                    asyncio.run(driver.speak(message.id))

    for advisory in driver.advisories:
        st.warning(advisory)

    if driver.phase == PHASE_HALTED_EMERGENCY:
        st.markdown(
            '<div style="text-align:center; margin:1rem 0">'
            '<a href="tel:108" style="background:#dc2626; color:white; padding:16px 40px;'
            ' border-radius:12px; font-size:1.4rem; font-weight:700;'
            ' text-decoration:none; display:inline-block;">📞 CALL 108 NOW</a>'
            "</div>",
            unsafe_allow_html=True,
        )
    elif not driver.is_complete:
        if speech.is_available():
            audio = st.audio_input("Tap the microphone and speak")
            if audio is not None:
                digest = hashlib.sha1(audio.getvalue()).hexdigest()
                if digest != st.session_state.last_audio_digest:
                    st.session_state.last_audio_digest = digest
                    submit_recording(audio)
        elif SPEECH_UNAVAILABLE_ADVISORY not in driver.advisories:
            st.caption("🎤 Voice input is unavailable. Please type your messages.")

        text = st.chat_input("Describe your symptoms...")
        if text:
            submit(text)

    if driver.can_proceed:
        st.divider()
        if st.button("▶ Get My Results", type="primary", use_container_width=True, key="proceed"):
            record = driver.proceed()
            if record is not None:
                st.session_state.results = build_results(record, care_directory, driver.analysis)
                driver.close()
                st.session_state.step = "results"
                st.rerun()


# ---------------------------------------------------------------------------
# STEP 4: RESULTS
# ---------------------------------------------------------------------------
def page_results() -> None:
    results = st.session_state.results

    st.title("📄 Your Consultation Results")
    st.caption(f"Report ID: {results['report_id']}")

    urgency = results.get("urgency_level")
    if urgency:
        st.info(f"{URGENCY_COLORS.get(urgency, '🟠')} Urgency: **{urgency.title()}**")

    col1, col2, col3 = st.columns(3)
    col1.metric("Possible Condition", results["condition"])
    col2.metric("Confidence", f"{results['confidence']}%")
    col3.metric("Severity", results["severity"])

    st.subheader("✅ Recommendations")
    for rec in results["recommendations"] + results["suggested_actions"]:
        st.markdown(f"- {rec}")

    st.warning(
        "**⚠️ Seek immediate care if you notice:**\n\n"
        + "\n".join(f"- {flag}" for flag in results["red_flags"])
    )

    tabs = st.tabs(["📍 Nearby Doctors", "🎥 Teleconsultation", "💊 Medicines", "🏪 Pharmacies"])
    with tabs[0]:
        for doc in results["doctors"]:
            st.markdown(
                f"**{doc['name']}** · {doc['specialization']} · ⭐ {doc['rating']}\n\n"
                f"{doc['hospital']}, {doc['address']} · {doc['distance']} · "
                f"₹{doc['consultation_fee']} · {doc['availability']}"
            )
    with tabs[1]:
        for doc in results["teleconsult"]:
            st.markdown(
                f"**{doc['name']}** · {doc['specialization']} · ⭐ {doc['rating']}\n\n"
                f"{', '.join(doc['languages'])} · {doc['experience']} · "
                f"₹{doc['consultation_fee']} · {doc['availability']}"
            )
    with tabs[2]:
        for med in results["medicines"]:
            st.markdown(
                f"**{med['name']}** ({med['generic_name']}) · {med['price']}\n\n"
                f"{med['dosage']} for {med['duration']}. "
                f"Avoid with: {', '.join(med['contraindications'])}"
            )
    with tabs[3]:
        for shop in results["pharmacies"]:
            delivery = "🚚 Delivery" if shop["delivery"] else "No delivery"
            st.markdown(
                f"**{shop['name']}** · {shop['distance']} · ⭐ {shop['rating']}\n\n"
                f"{shop['address']} · {shop['hours']} · {delivery}"
            )

    st.caption(results["disclaimer"])

    st.download_button(
        "📥 Download Report",
        data=report_text(results),
        file_name=f"{results['report_id']}.txt",
        mime="text/plain",
        use_container_width=True,
    )

    st.divider()
    if st.button("🔄 New Consultation", type="primary", use_container_width=True, key="restart"):
        reset()
        st.rerun()


# ---------------------------------------------------------------------------
# Sidebar: language and service status
# ---------------------------------------------------------------------------
def render_sidebar() -> None:
    with st.sidebar:
        st.markdown("### 🩺 MedConsult")
        st.divider()

        codes = list(localization.LANGUAGES)
        in_chat = st.session_state.driver is not None
        st.session_state.language = st.selectbox(
            "🌍 Language",
            codes,
            index=codes.index(st.session_state.language),
            format_func=lambda c: f"{localization.LANGUAGES[c]['flag']} {localization.LANGUAGES[c]['name']}",
            disabled=in_chat,
        )
        st.session_state.auto_speak = st.toggle(
            "🔊 Read replies aloud",
            value=st.session_state.auto_speak,
            disabled=in_chat or not speech.is_available(),
        )
        st.divider()

        st.markdown("**Services Status:**")
        for service_name, is_live in _svc_status.items():
            icon = "✅" if is_live else "⚠️"
            mode = "Live" if is_live else "Demo mode"
            st.markdown(f"{icon} {service_name}: *{mode}*")

        st.divider()
        if in_chat and st.button("✖ Start over", use_container_width=True, key="sidebar_reset"):
            reset()
            st.rerun()
        st.caption("⚠️ Demo system only. Call 108 for real emergencies.")


# ---------------------------------------------------------------------------
# Main router
# ---------------------------------------------------------------------------
def main() -> None:
    render_sidebar()

    step = st.session_state.step
    if step == "vitals":
        page_vitals()
    elif step == "chat":
        page_chat()
    elif step == "results":
        page_results()
    else:
        page_health_type()


if __name__ == "__main__":
    main()
