"""Localized user-facing copy and keyword tables.

Every language-dependent string lives here as data keyed by language code.
Unknown languages fall back to English.
"""

from __future__ import annotations

import re
from typing import Literal

CheckinReply = Literal["same", "better", "worse", "other"]

DEFAULT_LANGUAGE = "en"
SUPPORTED_LANGUAGES = ("en", "es", "pt", "fr")


def resolve_language(language: str | None) -> str:
    if not language:
        return DEFAULT_LANGUAGE
    code = language.strip().lower()[:2]
    return code if code in SUPPORTED_LANGUAGES else DEFAULT_LANGUAGE


# --- Check-in message ---

_CHECKIN_MESSAGES: dict[str, dict[str, str]] = {
    "en": {
        "greeting": "Hi {name} 👋",
        "greeting_anonymous": "Hi 👋",
        "body": (
            "Just checking in.\n\n"
            "How is {label} feeling today compared to yesterday?\n\n"
            "If anything has changed, I can add it to your note."
        ),
        "default_label": "your symptom",
    },
    "es": {
        "greeting": "Hola {name} 👋",
        "greeting_anonymous": "Hola 👋",
        "body": (
            "Solo quería ver cómo sigues.\n\n"
            "¿Cómo se siente {label} hoy comparado con ayer?\n\n"
            "Si algo ha cambiado, puedo agregarlo a tu registro."
        ),
        "default_label": "tu síntoma",
    },
    "pt": {
        "greeting": "Oi {name} 👋",
        "greeting_anonymous": "Oi 👋",
        "body": (
            "Só passando para ver como você está.\n\n"
            "Como está {label} hoje comparado a ontem?\n\n"
            "Se algo mudou, posso adicionar ao seu registro."
        ),
        "default_label": "seu sintoma",
    },
    "fr": {
        "greeting": "Bonjour {name} 👋",
        "greeting_anonymous": "Bonjour 👋",
        "body": (
            "Je voulais juste prendre des nouvelles.\n\n"
            "Comment va {label} aujourd'hui par rapport à hier?\n\n"
            "Si quelque chose a changé, je peux l'ajouter à votre dossier."
        ),
        "default_label": "votre symptôme",
    },
}


def checkin_message(name: str | None, case_label: str | None, language: str | None) -> str:
    templates = _CHECKIN_MESSAGES[resolve_language(language)]
    name = (name or "").strip()
    greeting = (
        templates["greeting"].format(name=name) if name else templates["greeting_anonymous"]
    )
    label = (case_label or "").strip() or templates["default_label"]
    return f"{greeting}\n\n" + templates["body"].format(label=label)


# --- Check-in replies ---

# Checked in order; the first hit wins.
_REPLY_KEYWORDS: tuple[tuple[CheckinReply, re.Pattern[str]], ...] = (
    ("same", re.compile(r"same|igual|mesmo|pareil|sin cambio|no change", re.IGNORECASE)),
    (
        "better",
        re.compile(
            r"better|mejor|melhor|mieux|less pain|menos dolor|improvement|mejora",
            re.IGNORECASE,
        ),
    ),
    (
        "worse",
        re.compile(
            r"worse|peor|pior|pire|more pain|más dolor|swelling|hincha|empeor",
            re.IGNORECASE,
        ),
    ),
)


def classify_checkin_reply(text: str) -> CheckinReply:
    for category, pattern in _REPLY_KEYWORDS:
        if pattern.search(text):
            return category
    return "other"


_ACKNOWLEDGMENTS: dict[str, dict[CheckinReply, str]] = {
    "en": {
        "same": "Got it — I've added that it feels about the same today. If it changes later, just message me and I'll update your note.",
        "better": "Glad to hear there's some improvement — I've added that to your note. If anything changes later, you can message me anytime.",
        "worse": "Thanks for letting me know — I've added that it feels worse today. If you'd like, tell me what changed most (pain, swelling, etc.) and I'll capture it clearly.",
        "other": "Thanks for the update — I've added it to your note. If anything else changes, you can message me anytime.",
    },
    "es": {
        "same": "Entendido — he añadido que se siente más o menos igual hoy. Si cambia después, solo escríbeme y actualizo tu registro.",
        "better": "Me alegra que haya mejoría — he añadido eso a tu registro. Si algo cambia después, puedes escribirme cuando quieras.",
        "worse": "Gracias por contarme — he añadido que se siente peor hoy. Si quieres, dime qué ha cambiado más (dolor, hinchazón, etc.) y lo capturo claramente.",
        "other": "Gracias por la actualización — lo he añadido a tu registro. Si algo más cambia, puedes escribirme cuando quieras.",
    },
    "pt": {
        "same": "Entendi — adicionei que está mais ou menos igual hoje. Se mudar depois, é só me escrever que atualizo seu registro.",
        "better": "Que bom que melhorou — adicionei isso ao seu registro. Se algo mudar depois, pode me escrever a qualquer momento.",
        "worse": "Obrigado por me contar — adicionei que está pior hoje. Se quiser, me diga o que mudou mais (dor, inchaço, etc.) e eu registro claramente.",
        "other": "Obrigado pela atualização — adicionei ao seu registro. Se algo mais mudar, pode me escrever a qualquer momento.",
    },
    "fr": {
        "same": "Compris — j'ai noté que c'est à peu près pareil aujourd'hui. Si ça change plus tard, écrivez-moi et je mettrai à jour votre dossier.",
        "better": "Content d'apprendre qu'il y a une amélioration — j'ai ajouté cela à votre dossier. Si quelque chose change, vous pouvez m'écrire à tout moment.",
        "worse": "Merci de me le dire — j'ai noté que c'est pire aujourd'hui. Si vous voulez, dites-moi ce qui a le plus changé (douleur, gonflement, etc.) et je le noterai clairement.",
        "other": "Merci pour la mise à jour — je l'ai ajoutée à votre dossier. Si quelque chose d'autre change, vous pouvez m'écrire à tout moment.",
    },
}

_NOTE_ENTRIES: dict[str, dict[str, str]] = {
    "en": {
        "prefix": "Follow-up",
        "same": "No significant changes",
        "better": "Improvement reported",
        "worse": "Worsening reported",
    },
    "es": {
        "prefix": "Seguimiento",
        "same": "Sin cambios significativos",
        "better": "Mejoría reportada",
        "worse": "Empeoramiento reportado",
    },
    "pt": {
        "prefix": "Acompanhamento",
        "same": "Sem mudanças significativas",
        "better": "Melhora reportada",
        "worse": "Piora reportada",
    },
    "fr": {
        "prefix": "Suivi",
        "same": "Pas de changements significatifs",
        "better": "Amélioration signalée",
        "worse": "Aggravation signalée",
    },
}


def checkin_acknowledgment(category: CheckinReply, language: str | None) -> str:
    return _ACKNOWLEDGMENTS[resolve_language(language)][category]


def checkin_note_entry(category: CheckinReply, reply: str, language: str | None) -> str:
    """Note line appended to the concern, e.g. 'Follow-up: No significant changes - "same"'."""
    entries = _NOTE_ENTRIES[resolve_language(language)]
    quoted = '"' + " ".join(reply.split()) + '"'
    if category == "other":
        return f"{entries['prefix']}: {quoted}"
    return f"{entries['prefix']}: {entries[category]} - {quoted}"


# --- Case labels ---

_CASE_LABEL_PATTERNS: dict[str, tuple[re.Pattern[str], ...]] = {
    language: tuple(re.compile(rf"\b({alternatives})\b", re.IGNORECASE) for alternatives in patterns)
    for language, patterns in {
        "en": (
            "eyes|eye",
            "lower back|upper back|back",
            "headache|head",
            "throat",
            "stomach|abdomen",
            "chest",
            "knee|ankle|wrist|shoulder|elbow",
            "stye|sty",
        ),
        "es": (
            "ojos|ojo",
            "espalda",
            "dolor de cabeza|cabeza",
            "garganta",
            "estómago|abdomen",
            "pecho",
            "rodilla|tobillo|muñeca|hombro|codo",
            "orzuelo",
        ),
        "pt": (
            "olhos|olho",
            "costas",
            "dor de cabeça|cabeça",
            "garganta",
            "estômago|abdômen|barriga",
            "peito",
            "joelho|tornozelo|pulso|ombro|cotovelo",
            "terçol",
        ),
        "fr": (
            "yeux|œil|oeil",
            "dos",
            "mal de tête|tête",
            "gorge",
            "estomac|ventre|abdomen",
            "poitrine",
            "genou|cheville|poignet|épaule|coude",
            "orgelet",
        ),
    }.items()
}

_CASE_LABEL_PREFIXES = {"en": "your ", "es": "tu ", "pt": "seu ", "fr": "votre "}


def extract_case_label(text: str, language: str | None) -> str | None:
    """Short body-part label for the check-in message, e.g. "your back"."""
    code = resolve_language(language)
    for pattern in _CASE_LABEL_PATTERNS[code]:
        found = pattern.search(text)
        if found:
            return _CASE_LABEL_PREFIXES[code] + found.group(0).lower()
    return None


# --- Concern commands ---

_COMMAND_CONFIRMATIONS: dict[str, dict[str, str]] = {
    "en": {
        "joiner": " and ",
        "merge": "Got it — I've combined {names} into one note.",
        "delete": "Done — I've removed {name} from your notes.",
        "rename": "Done — I've renamed {name} to *{new_name}*.",
        "not_found": "I couldn't find that concern in your notes. You can check your current notes on your summary page.",
        "conflict": "You already have a note called {name}. Try a different name.",
        "invalid": "I couldn't apply that change. To combine notes, name at least two different ones.",
    },
    "es": {
        "joiner": " y ",
        "merge": "Perfecto — he combinado {names} en una sola nota.",
        "delete": "Listo — he eliminado {name} de tus notas.",
        "rename": "Listo — he renombrado {name} a *{new_name}*.",
        "not_found": "No encontré esa preocupación en tus notas. Puedes ver tus notas actuales en tu página de resumen.",
        "conflict": "Ya tienes una nota llamada {name}. Prueba con otro nombre.",
        "invalid": "No pude aplicar ese cambio. Para combinar notas, nombra al menos dos distintas.",
    },
    "pt": {
        "joiner": " e ",
        "merge": "Perfeito — combinei {names} em uma única nota.",
        "delete": "Pronto — removi {name} das suas notas.",
        "rename": "Pronto — renomeei {name} para *{new_name}*.",
        "not_found": "Não encontrei essa preocupação nas suas notas. Você pode ver suas notas atuais na página de resumo.",
        "conflict": "Você já tem uma nota chamada {name}. Tente outro nome.",
        "invalid": "Não consegui aplicar essa alteração. Para combinar notas, cite pelo menos duas diferentes.",
    },
    "fr": {
        "joiner": " et ",
        "merge": "Parfait — j'ai combiné {names} en une seule note.",
        "delete": "C'est fait — j'ai supprimé {name} de vos notes.",
        "rename": "C'est fait — j'ai renommé {name} en *{new_name}*.",
        "not_found": "Je n'ai pas trouvé cette préoccupation dans vos notes. Vous pouvez consulter vos notes actuelles sur votre page de résumé.",
        "conflict": "Vous avez déjà une note appelée {name}. Essayez un autre nom.",
        "invalid": "Je n'ai pas pu appliquer ce changement. Pour combiner des notes, nommez-en au moins deux différentes.",
    },
}


def command_not_found_message(language: str | None) -> str:
    return _COMMAND_CONFIRMATIONS[resolve_language(language)]["not_found"]


def command_invalid_message(language: str | None) -> str:
    return _COMMAND_CONFIRMATIONS[resolve_language(language)]["invalid"]


def command_confirmation(
    command: str,
    affected_names: list[str],
    language: str | None,
    new_name: str | None = None,
) -> str:
    templates = _COMMAND_CONFIRMATIONS[resolve_language(language)]
    if not affected_names or command not in ("merge", "delete", "rename"):
        return templates["not_found"]
    if command == "merge":
        return templates["merge"].format(names=templates["joiner"].join(affected_names))
    if command == "delete":
        return templates["delete"].format(name=affected_names[0])
    return templates["rename"].format(
        name=affected_names[0], new_name=new_name or affected_names[-1]
    )


def command_conflict_message(existing_title: str, language: str | None) -> str:
    return _COMMAND_CONFIRMATIONS[resolve_language(language)]["conflict"].format(name=existing_title)
