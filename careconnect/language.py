"""Language detection and the localized texts the pipeline sends itself.

Detection is a cheap, deterministic script/keyword heuristic run on every
inbound message.  Messages the bot authors without the LLM (fallbacks,
apologies, notices, booking confirmations) come from the tables below.
Every tag the detector can return has its own entry; any other tag falls
back to English.
"""

from __future__ import annotations

import re
from datetime import datetime
from zoneinfo import ZoneInfo

from careconnect.config import TIMEZONE

DEFAULT_DETECTED_LANGUAGE = "ko"
FALLBACK_LANGUAGE = "en"

# ── Detection ────────────────────────────────────────────────────────

_HANGUL = re.compile(r"[\u3131-\u3163\uac00-\ud7a3]")
_THAI = re.compile(r"[\u0e00-\u0e7f]")
_KANA = re.compile(r"[\u3040-\u30ff]")
_HAN = re.compile(r"[\u4e00-\u9fff]")
_VIETNAMESE = re.compile(
    r"[ạảãầấậẩẫăằắặẳẵẹẻẽềếệểễìịỉĩòọỏõồốộổỗơờớợởỡùụủũưừứựửữỳýỵỷỹđ]"
)
_ARABIC = re.compile(r"[\u0600-\u06ff]")
_DEVANAGARI = re.compile(r"[\u0900-\u097f]")
_CYRILLIC = re.compile(r"[\u0400-\u04ff]")
_WORD = re.compile(r"[^\W\d_]+", re.UNICODE)

# Checked in order; the first list sharing a word with the text wins.
_LATIN_WORDS: tuple[tuple[str, frozenset[str]], ...] = (
    ("es", frozenset({"hola", "como", "que", "por", "para", "con", "una", "está", "muy",
                      "gracias", "donde", "cuando"})),
    ("pt", frozenset({"olá", "com", "uma", "muito", "obrigado", "obrigada", "onde", "quando"})),
    ("fr", frozenset({"bonjour", "comment", "pour", "avec", "une", "est", "très", "merci",
                      "où", "quand"})),
    ("de", frozenset({"hallo", "wie", "für", "mit", "eine", "ist", "sehr", "danke", "wann"})),
    ("id", frozenset({"apa", "bagaimana", "dimana", "kapan", "mengapa", "dengan", "untuk",
                      "dari", "yang", "adalah"})),
    ("ms", frozenset({"bila", "daripada", "ialah", "sila", "khabar"})),
)
_MALAY_PHRASES = ("terima kasih", "di mana", "apa khabar")


def detect_language(text: str | None) -> str:
    """Return a short language tag for *text*.

    Empty input yields ``"ko"``; unrecognised Latin-script text yields
    ``"en"``.
    """
    if not text or not isinstance(text, str) or not text.strip():
        return DEFAULT_DETECTED_LANGUAGE

    if _HANGUL.search(text):
        return "ko"
    if _THAI.search(text):
        return "th"
    if _KANA.search(text):
        return "ja"
    if _HAN.search(text):
        return "zh"

    lowered = text.strip().lower()
    if _VIETNAMESE.search(lowered):
        return "vi"
    if _ARABIC.search(text):
        return "ar"
    if _DEVANAGARI.search(text):
        return "hi"
    if _CYRILLIC.search(text):
        return "ru"

    words = set(_WORD.findall(lowered))
    for tag, vocabulary in _LATIN_WORDS:
        if words & vocabulary:
            return tag
    if any(phrase in lowered for phrase in _MALAY_PHRASES):
        return "ms"
    return "en"


# ── Sentence boundaries ─────────────────────────────────────────────


def _with_marks(*stems: str, marks: str = ".!?") -> tuple[str, ...]:
    return tuple(stem + mark for stem in stems for mark in marks)


_GENERIC_ENDERS = (".", "!", "?")

SENTENCE_ENDERS: dict[str, tuple[str, ...]] = {
    "ko": _with_marks(
        "했습니다", "있습니다", "습니다", "입니다", "됩니다", "하세요",
        "이에요", "해요", "예요", "에요",
    ) + _GENERIC_ENDERS,
    "th": _with_marks("นะครับ", "นะคะ", "ครับ", "ค่ะ", "คะ") + _GENERIC_ENDERS,
    "en": _with_marks(" help", " you", " it") + _GENERIC_ENDERS,
    "ja": _with_marks("でした", "ました", "です", "ます", marks=".!?。！？") + ("。", "！", "？")
    + _GENERIC_ENDERS,
    "zh": ("。", "！", "？") + _GENERIC_ENDERS,
}

ELLIPSIS: dict[str, str] = {"ko": "...", "th": "...", "en": "...", "ja": "...", "zh": "..."}


def sentence_enders(language: str) -> tuple[str, ...]:
    return SENTENCE_ENDERS.get(language, SENTENCE_ENDERS[FALLBACK_LANGUAGE])


def ellipsis(language: str) -> str:
    return ELLIPSIS.get(language, "...")


# ── Localized texts ─────────────────────────────────────────────────

# Every tag ``detect_language`` can return.
SUPPORTED_LANGUAGES = ("ko", "th", "en", "ja", "zh", "vi", "es", "pt", "fr", "de", "ms", "id", "ar", "hi", "ru")

AI_ERROR_MESSAGES = {
    "ko": "죄송합니다, AI 시스템에 일시적인 오류가 발생했습니다. 잠시 후 다시 시도해주세요.",
    "th": "ขอโทษค่ะ มีข้อผิดพลาดชั่วคราวในระบบ AI กรุณาลองใหม่ในอีกสักครู่ค่ะ",
    "en": "Sorry, there was a temporary error with the AI system. Please try again later.",
    "ja": "すみません、AIシステムに一時的なエラーが発生しました。少し待ってから再度お試しください。",
    "zh": "抱歉，AI系统出现临时错误，请稍后再试。",
    "vi": "Xin lỗi, hệ thống AI đang gặp lỗi tạm thời. Vui lòng thử lại sau.",
    "es": "Lo sentimos, hubo un error temporal en el sistema de IA. Por favor, inténtalo de nuevo más tarde.",
    "pt": "Desculpe, ocorreu um erro temporário no sistema de IA. Por favor, tente novamente mais tarde.",
    "fr": "Désolé, une erreur temporaire est survenue dans le système d'IA. Veuillez réessayer plus tard.",
    "de": "Entschuldigung, im KI-System ist ein vorübergehender Fehler aufgetreten. "
          "Bitte versuchen Sie es später erneut.",
    "ms": "Maaf, terdapat ralat sementara pada sistem AI. Sila cuba lagi sebentar lagi.",
    "id": "Maaf, terjadi kesalahan sementara pada sistem AI. Silakan coba lagi nanti.",
    "ar": "عذرًا، حدث خطأ مؤقت في نظام الذكاء الاصطناعي. يرجى المحاولة مرة أخرى لاحقًا.",
    "hi": "क्षमा करें, AI सिस्टम में अस्थायी त्रुटि हुई है। कृपया थोड़ी देर बाद पुनः प्रयास करें।",
    "ru": "Извините, в системе ИИ произошла временная ошибка. Пожалуйста, попробуйте позже.",
}

REPHRASE_MESSAGES = {
    "ko": "죄송합니다, 요청을 정확히 이해하지 못했어요. 조금 다른 방식으로 말씀해주시겠어요?",
    "th": "ขอโทษค่ะ ฉันเข้าใจคำถามของคุณไม่ค่อยค่ะ กรุณาถามใหม่ได้ไหมคะ",
    "en": "I'm sorry, I didn't understand your request. Could you please rephrase it?",
    "ja": "すみません、リクエストを理解できませんでした。別の表現で言い換えていただけますか？",
    "zh": "抱歉，我没能理解您的请求。您能换一种方式说明吗？",
    "vi": "Xin lỗi, tôi chưa hiểu yêu cầu của bạn. Bạn có thể diễn đạt lại được không?",
    "es": "Lo siento, no entendí tu solicitud. ¿Podrías expresarla de otra manera?",
    "pt": "Desculpe, não entendi sua solicitação. Você poderia reformulá-la?",
    "fr": "Désolé, je n'ai pas compris votre demande. Pourriez-vous la reformuler ?",
    "de": "Entschuldigung, ich habe Ihre Anfrage nicht verstanden. Könnten Sie sie bitte anders formulieren?",
    "ms": "Maaf, saya tidak memahami permintaan anda. Boleh anda nyatakan dengan cara lain?",
    "id": "Maaf, saya tidak memahami permintaan Anda. Bisakah Anda menyampaikannya dengan cara lain?",
    "ar": "عذرًا، لم أفهم طلبك. هل يمكنك إعادة صياغته؟",
    "hi": "क्षमा करें, मैं आपका अनुरोध समझ नहीं पाया। क्या आप इसे दूसरे शब्दों में बता सकते हैं?",
    "ru": "Извините, я не понял ваш запрос. Не могли бы вы сформулировать его иначе?",
}

DEFAULT_MESSAGES = {
    "ko": "도움이 필요하신 내용을 조금만 더 구체적으로 알려주실 수 있을까요?",
    "th": "ช่วยบอกรายละเอียดที่ต้องการความช่วยเหลือให้ชัดเจนหน่อยได้ไหมคะ",
    "en": "Could you please provide more specific details about what you need help with?",
    "ja": "必要なサポートについて、もう少し具体的に教えていただけますか？",
    "zh": "能否请您更具体地说明需要什么帮助？",
    "vi": "Bạn có thể cho biết cụ thể hơn bạn cần hỗ trợ gì không?",
    "es": "¿Podrías darnos más detalles sobre lo que necesitas?",
    "pt": "Você poderia dar mais detalhes sobre o que precisa?",
    "fr": "Pourriez-vous préciser ce dont vous avez besoin ?",
    "de": "Könnten Sie bitte genauer beschreiben, wobei Sie Hilfe benötigen?",
    "ms": "Boleh anda berikan butiran lanjut tentang bantuan yang anda perlukan?",
    "id": "Bisakah Anda memberikan detail lebih lanjut tentang bantuan yang Anda butuhkan?",
    "ar": "هل يمكنك توضيح ما تحتاج إليه بمزيد من التفاصيل؟",
    "hi": "क्या आप बता सकते हैं कि आपको किस बारे में मदद चाहिए?",
    "ru": "Не могли бы вы подробнее рассказать, с чем вам нужна помощь?",
}

HUMAN_TIMEOUT_NOTICES = {
    "ko": "상담원이 일정 시간 응답하지 않아 AI 모드로 전환되었습니다. 계속 원하시는 내용을 말씀해 주세요.",
    "th": "เนื่องจากเจ้าหน้าที่ไม่ได้ตอบกลับในช่วงเวลาหนึ่ง ระบบจึงเปลี่ยนเป็นโหมด AI แล้วค่ะ แจ้งสิ่งที่ต้องการต่อได้เลยค่ะ",
    "en": "Our staff did not respond for a while, so you are now chatting with our AI assistant again. Please tell us what you need.",
    "ja": "担当者からの応答がしばらくなかったため、AIモードに切り替わりました。引き続きご用件をお知らせください。",
    "zh": "由于工作人员一段时间内未回复，已切换回AI助手。请继续告诉我们您的需求。",
    "vi": "Nhân viên chưa phản hồi trong một thời gian nên bạn đã được chuyển lại trợ lý AI. "
          "Vui lòng cho chúng tôi biết bạn cần gì.",
    "es": "Nuestro personal no respondió durante un tiempo, así que vuelves a hablar con nuestro asistente de IA. "
          "Cuéntanos qué necesitas.",
    "pt": "Nossa equipe não respondeu por algum tempo, então você voltou a falar com nosso assistente de IA. "
          "Diga-nos do que precisa.",
    "fr": "Notre équipe n'a pas répondu depuis un moment, vous êtes donc de nouveau avec notre assistant IA. "
          "Dites-nous ce dont vous avez besoin.",
    "de": "Unser Team hat eine Weile nicht geantwortet, daher chatten Sie wieder mit unserem KI-Assistenten. "
          "Bitte teilen Sie uns Ihr Anliegen mit.",
    "ms": "Kakitangan kami tidak membalas untuk seketika, jadi anda kini berbual semula dengan pembantu AI kami. "
          "Sila beritahu apa yang anda perlukan.",
    "id": "Staf kami belum merespons selama beberapa waktu, jadi Anda kembali terhubung dengan asisten AI kami. "
          "Silakan sampaikan kebutuhan Anda.",
    "ar": "لم يرد فريقنا لفترة، لذا أنت الآن تتحدث مجددًا مع مساعدنا الذكي. يرجى إخبارنا بما تحتاج إليه.",
    "hi": "हमारे स्टाफ़ ने कुछ समय तक जवाब नहीं दिया, इसलिए अब आप फिर से हमारे AI सहायक से बात कर रहे हैं। "
          "कृपया बताएं आपको क्या चाहिए।",
    "ru": "Наш сотрудник какое-то время не отвечал, поэтому вы снова общаетесь с нашим ИИ-ассистентом. "
          "Пожалуйста, расскажите, что вам нужно.",
}

ATTACHMENT_NOTICES = {
    "image": {
        "ko": "사진 잘 받았어요! 의사가 확인한 뒤 낮 시간에 자세히 안내드릴게요.",
        "th": "ได้รับรูปภาพแล้วค่ะ! แพทย์จะตรวจสอบและแจ้งรายละเอียดให้ในช่วงกลางวันค่ะ",
        "en": "We received your photo! A doctor will review it and get back to you during the day.",
        "ja": "お写真を受け取りました！医師が確認のうえ、日中に詳しくご案内いたします。",
        "zh": "已收到您的照片！医生查看后会在白天为您详细说明。",
        "vi": "Chúng tôi đã nhận được ảnh của bạn! Bác sĩ sẽ xem và phản hồi chi tiết trong ngày.",
        "es": "¡Recibimos tu foto! Un médico la revisará y te responderá durante el día.",
        "pt": "Recebemos sua foto! Um médico vai analisá-la e retornará durante o dia.",
        "fr": "Nous avons bien reçu votre photo ! Un médecin l'examinera et vous répondra dans la journée.",
        "de": "Wir haben Ihr Foto erhalten! Ein Arzt wird es prüfen und sich tagsüber bei Ihnen melden.",
        "ms": "Kami telah menerima gambar anda! Doktor akan menyemaknya dan menghubungi anda pada waktu siang.",
        "id": "Kami sudah menerima foto Anda! Dokter akan memeriksanya dan menghubungi Anda pada siang hari.",
        "ar": "تلقينا صورتك! سيراجعها الطبيب ويرد عليك خلال النهار.",
        "hi": "हमें आपकी फ़ोटो मिल गई है! डॉक्टर इसे देखकर दिन के समय आपसे संपर्क करेंगे।",
        "ru": "Мы получили ваше фото! Врач посмотрит его и ответит вам в течение дня.",
    },
    "file": {
        "ko": "파일 잘 받았어요! 의사가 확인한 뒤 낮 시간에 자세히 안내드릴게요.",
        "th": "ได้รับไฟล์แล้วค่ะ! แพทย์จะตรวจสอบและแจ้งรายละเอียดให้ในช่วงกลางวันค่ะ",
        "en": "We received your file! A doctor will review it and get back to you during the day.",
        "ja": "ファイルを受け取りました！医師が確認のうえ、日中に詳しくご案内いたします。",
        "zh": "已收到您的文件！医生查看后会在白天为您详细说明。",
        "vi": "Chúng tôi đã nhận được tệp của bạn! Bác sĩ sẽ xem và phản hồi chi tiết trong ngày.",
        "es": "¡Recibimos tu archivo! Un médico lo revisará y te responderá durante el día.",
        "pt": "Recebemos seu arquivo! Um médico vai analisá-lo e retornará durante o dia.",
        "fr": "Nous avons bien reçu votre fichier ! Un médecin l'examinera et vous répondra dans la journée.",
        "de": "Wir haben Ihre Datei erhalten! Ein Arzt wird sie prüfen und sich tagsüber bei Ihnen melden.",
        "ms": "Kami telah menerima fail anda! Doktor akan menyemaknya dan menghubungi anda pada waktu siang.",
        "id": "Kami sudah menerima file Anda! Dokter akan memeriksanya dan menghubungi Anda pada siang hari.",
        "ar": "تلقينا ملفك! سيراجعه الطبيب ويرد عليك خلال النهار.",
        "hi": "हमें आपकी फ़ाइल मिल गई है! डॉक्टर इसे देखकर दिन के समय आपसे संपर्क करेंगे।",
        "ru": "Мы получили ваш файл! Врач посмотрит его и ответит вам в течение дня.",
    },
}

BOOKING_CONFIRMED_TEMPLATES = {
    "ko": "{name}님의 예약이 완료되었습니다! 📅\n예약 시간: {time}\n곧 확인 연락을 드리겠습니다.",
    "en": "{name}, your appointment has been confirmed! 📅\nAppointment time: {time}\n"
          "We will contact you shortly for confirmation.",
    "th": "คุณ{name} การจองของคุณเสร็จสมบูรณ์แล้วค่ะ! 📅\nเวลานัดหมาย: {time}\nเราจะติดต่อกลับเพื่อยืนยันค่ะ",
    "ja": "{name}様のご予約が完了いたしました！📅\nご予約時間: {time}\n確認のご連絡を差し上げます。",
    "zh": "{name}，您的预约已确认！📅\n预约时间: {time}\n我们将很快联系您确认。",
    "vi": "{name}, lịch hẹn của bạn đã được xác nhận! 📅\nThời gian hẹn: {time}\nChúng tôi sẽ liên hệ với bạn sớm.",
    "es": "{name}, ¡tu cita ha sido confirmada! 📅\nHora de la cita: {time}\nTe contactaremos pronto para confirmación.",
    "pt": "{name}, sua consulta foi confirmada! 📅\nHorário da consulta: {time}\nEntraremos em contato em breve.",
    "fr": "{name}, votre rendez-vous a été confirmé! 📅\nHeure du rendez-vous: {time}\nNous vous contacterons bientôt.",
    "de": "{name}, Ihr Termin wurde bestätigt! 📅\nTerminzeit: {time}\nWir werden Sie bald kontaktieren.",
    "ms": "{name}, janji temu anda telah disahkan! 📅\nMasa janji temu: {time}\n"
          "Kami akan menghubungi anda tidak lama lagi.",
    "id": "{name}, janji temu Anda telah dikonfirmasi! 📅\nWaktu janji temu: {time}\n"
          "Kami akan segera menghubungi Anda.",
    "ar": "{name}، تم تأكيد موعدك! 📅\nوقت الموعد: {time}\nسنتواصل معك قريبًا للتأكيد.",
    "hi": "{name}, आपकी अपॉइंटमेंट की पुष्टि हो गई है! 📅\nअपॉइंटमेंट का समय: {time}\n"
          "हम जल्द ही आपसे संपर्क करेंगे।",
    "ru": "{name}, ваша запись подтверждена! 📅\nВремя записи: {time}\n"
          "Мы скоро свяжемся с вами для подтверждения.",
}


def localized(table: dict[str, str], language: str) -> str:
    """Pick *language* from a message table, falling back to English."""
    return table.get(language) or table[FALLBACK_LANGUAGE]


def ai_error_message(language: str) -> str:
    return localized(AI_ERROR_MESSAGES, language)


def rephrase_message(language: str) -> str:
    return localized(REPHRASE_MESSAGES, language)


def default_message(language: str) -> str:
    return localized(DEFAULT_MESSAGES, language)


def human_timeout_notice(language: str) -> str:
    return localized(HUMAN_TIMEOUT_NOTICES, language)


def attachment_notice(kind: str, language: str) -> str:
    return localized(ATTACHMENT_NOTICES["image" if kind == "image" else "file"], language)


def booking_confirmed_message(name: str, formatted_time: str, language: str) -> str:
    template = localized(BOOKING_CONFIRMED_TEMPLATES, language)
    return template.replace("{name}", name).replace("{time}", formatted_time)


# ── Date/time rendering ─────────────────────────────────────────────

_EN_WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")
_KO_WEEKDAYS = ("월", "화", "수", "목", "금", "토", "일")
_JA_WEEKDAYS = ("月", "火", "水", "木", "金", "土", "日")
_ZH_WEEKDAYS = ("一", "二", "三", "四", "五", "六", "日")
_TH_WEEKDAYS = ("จันทร์", "อังคาร", "พุธ", "พฤหัสบดี", "ศุกร์", "เสาร์", "อาทิตย์")
_TH_MONTHS = (
    "มกราคม", "กุมภาพันธ์", "มีนาคม", "เมษายน", "พฤษภาคม", "มิถุนายน",
    "กรกฎาคม", "สิงหาคม", "กันยายน", "ตุลาคม", "พฤศจิกายน", "ธันวาคม",
)
_EN_MONTHS = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)


def format_datetime_by_language(
    value: str | datetime,
    language: str,
    tz_name: str = TIMEZONE,
) -> str:
    """Render an instant the way a reader of *language* expects, in *tz_name*.

    Unparseable input is returned unchanged.
    """
    if isinstance(value, str):
        try:
            moment = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return value
    else:
        moment = value
    zone = ZoneInfo(tz_name)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=zone)
    local = moment.astimezone(zone)
    wd = local.weekday()
    hour12 = local.hour % 12 or 12

    if language == "ko":
        meridiem = "오전" if local.hour < 12 else "오후"
        return (
            f"{local.year}년 {local.month}월 {local.day}일 ({_KO_WEEKDAYS[wd]}) "
            f"{meridiem} {hour12}:{local.minute:02d}"
        )
    if language == "ja":
        return (
            f"{local.year}年{local.month}月{local.day}日({_JA_WEEKDAYS[wd]}) "
            f"{local.hour}:{local.minute:02d}"
        )
    if language == "zh":
        return (
            f"{local.year}年{local.month}月{local.day}日 星期{_ZH_WEEKDAYS[wd]} "
            f"{local.hour}:{local.minute:02d}"
        )
    if language == "th":
        # Thai calendars count years in the Buddhist era
        return (
            f"วัน{_TH_WEEKDAYS[wd]}ที่ {local.day} {_TH_MONTHS[local.month - 1]} "
            f"{local.year + 543} {local.hour:02d}:{local.minute:02d} น."
        )
    if language in ("es", "pt", "fr", "de", "vi", "ms", "id"):
        return f"{local.day:02d}/{local.month:02d}/{local.year} {local.hour:02d}:{local.minute:02d}"
    meridiem = "AM" if local.hour < 12 else "PM"
    return (
        f"{_EN_WEEKDAYS[wd]}, {_EN_MONTHS[local.month - 1]} {local.day}, {local.year} "
        f"{hour12}:{local.minute:02d} {meridiem}"
    )
