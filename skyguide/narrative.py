"""Short weather narratives from a text generation backend, with canned fallbacks.

The narrator speaks in a humorous Canarian register. When the backend is
unreachable, throttled or returns nothing, a template picked from the
condition bucket stands in so callers always receive text.
"""

from __future__ import annotations

import asyncio
import hashlib
import math
import random
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

from skyguide.cache import CacheNamespace
from skyguide.domain import POI, WeatherAlert
from skyguide.errors import InputValidationError, SkyGuideError
from skyguide.runtime import FetchRuntime
from skyguide.streams import TextStream
from skyguide.text_client import Messages, TextGenerationClient
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="narrative")

THROTTLE_BUCKET = "insight"

UpdateFn = Callable[[str], object]

INVALID_PARAMS_MESSAGE = (
    "¡Urca! Parece que faltan algunos datos para darte un consejo como Dios manda. "
    "Revisa y vuelve a intentarlo, ¡mi niño!"
)
FREEFORM_FALLBACK = (
    "¡Ay, mi niño! Ahora mismo no puedo responderte, que se me ha ido la conexión "
    "más rápido que un turista huyendo de la calima. Prueba otra vez en un ratito."
)

SYSTEM_PROMPT = """Eres un asistente meteorológico canario con mucho humor y gracia.
Hablas como alguien de las Islas Canarias: usas expresiones como "mi niño", "chacho",
"¡ños!" o "mi arma" y haces comparaciones divertidas con la vida en las islas.

Reglas:
- Sé gracioso pero útil; usa expresiones canarias auténticas.
- Sé breve: entre 3 y 4 frases.
- No inventes datos que no aparezcan en la información que recibes.
- Si hay alertas activas, menciona la principal.
- Si hay puntos de interés, sugiere alguno adecuado para el tiempo que hace.
- Responde solo con texto, sin listas ni bloques de código."""

FREEFORM_SYSTEM_PROMPT = """Eres un asistente meteorológico canario con humor.
Responde de forma breve y útil, sin inventar datos."""

TEMPLATES = {
    "sunny": (
        "¡Ay mi niño! Hoy en {location} tenemos un solecito de {temperature}°C que te va a dejar "
        "más moreno que un guanche en la playa. ¡Ponte cremita o vas a acabar como una papa asada!",
        "¡Madre mía qué calor, mi arma! {temperature}°C en {location} y un sol que pega más fuerte "
        "que mi abuela con la chancleta. ¡No te me olvides el agüita!",
    ),
    "cloudy": (
        "¡Echa un vistazo a ese cielo, mi niño! {temperature}°C en {location} y está más nublado "
        "que el futuro de la UD Las Palmas. Pero tranqui, que aquí el gofio y el sol siempre vuelven.",
        "¡Achísss! En {location} estamos con {temperature}°C y unas nubes que parecen algodón de "
        "azúcar. No te preocupes que en Canarias las nubes son pasajeras, como los turistas en "
        "chanclas y calcetines.",
    ),
    "rainy": (
        "¡Cuidadito, mi niño! En {location} está cayendo más agua que cuando mi vecina riega las "
        "plantas del balcón. Con {temperature}°C y esta lluvia, si sales a la calle vas a volver "
        "más empapado que un escaldón de gofio.",
        "¡Madre mía la que está cayendo en {location}! {temperature}°C y una lluvia que no es "
        "calima ni es na'. Coge el chubasquero o vas a acabar más mojado que un mojo picón.",
    ),
    "other": (
        "Tiempo un poco raro hoy en {location} con {temperature}°C, ¿no? Bueno, mientras no sea "
        "una calima de esas que te dejan el coche hecho un cromo... ¡todo bien! Dale suave y disfruta.",
    ),
}

ALERT_SUFFIX = (
    ' Y pendiente a esa alerta de "{phenomenon}" que está más seria que mi madre cuando le digo '
    "que no quiero más papas arrugadas."
)
POI_SUFFIX_SUNNY = (
    " ¡Chacho! Aprovecha para visitar {name}, que está cerquita y con este tiempo está más "
    "bonito que un timple nuevo."
)
POI_SUFFIX_RAINY = " Con esta lluvia, mejor quédate en casa o date una vueltita por {name} cuando escampe un poco."
POI_SUFFIX_OTHER = " Ya que estás por ahí, date una vuelta por {name}, que está a tiro de piedra."


def condition_bucket(condition: str) -> str:
    c = condition.lower()
    if "sun" in c or "clear" in c:
        return "sunny"
    if "cloud" in c:
        return "cloudy"
    if "rain" in c or "drizzle" in c or "storm" in c:
        return "rainy"
    return "other"


def _format_temperature(value: float) -> str:
    return str(int(round(value)))


@dataclass
class NarrativeContext:
    """Everything the narrator may talk about."""

    location: str
    condition: str
    temperature: Optional[float]
    alerts: Sequence[WeatherAlert] = field(default_factory=tuple)
    pois: Sequence[POI] = field(default_factory=tuple)

    def validate(self) -> None:
        if not (self.location or "").strip():
            raise InputValidationError("Location is required")
        if not (self.condition or "").strip():
            raise InputValidationError("Condition is required")
        t = self.temperature
        if isinstance(t, bool) or not isinstance(t, (int, float)) or math.isnan(t):
            raise InputValidationError("Temperature must be a number", details={"temperature": t})

    def fingerprint(self) -> str:
        alert_ids = "-".join(a.id for a in self.alerts) or "noalerts"
        poi_ids = "nopois"
        if self.pois:
            # every POI reaches the prompt
            joined = "|".join(sorted(p.id for p in self.pois))
            poi_ids = f"{len(self.pois)}p" + hashlib.sha256(joined.encode("utf-8")).hexdigest()[:12]
        return (
            f"{self.location}_{self.condition}_{_format_temperature(self.temperature)}"
            f"_{alert_ids}_{poi_ids}"
        )


def fallback_insight(context: NarrativeContext, rng: Optional[random.Random] = None) -> str:
    """Template narrative for the context's condition bucket, with alert and POI suffixes."""
    rng = rng or random.Random()
    bucket = condition_bucket(context.condition)
    text = rng.choice(TEMPLATES[bucket]).format(
        location=context.location, temperature=_format_temperature(context.temperature)
    )
    if context.alerts:
        text += ALERT_SUFFIX.format(phenomenon=context.alerts[0].phenomenon)
    if context.pois:
        poi = rng.choice(list(context.pois)[:3])
        if bucket == "sunny":
            text += POI_SUFFIX_SUNNY.format(name=poi.name)
        elif bucket == "rainy":
            text += POI_SUFFIX_RAINY.format(name=poi.name)
        else:
            text += POI_SUFFIX_OTHER.format(name=poi.name)
    return text


def strip_markdown_fences(text: str) -> str:
    """Remove surrounding Markdown code fences from text."""
    if not text:
        return text
    t = text.strip()
    if not t.startswith("```"):
        return t
    lines = t.splitlines()
    if lines and lines[0].strip().startswith("```"):
        lines = lines[1:]
    if lines and lines[-1].strip().startswith("```"):
        lines = lines[:-1]
    return "\n".join(lines).strip()


def build_insight_messages(context: NarrativeContext) -> Messages:
    """System+user messages describing the current situation."""
    lines = [
        f"Ubicación: {context.location}",
        f"Temperatura: {_format_temperature(context.temperature)}°C",
        f"Condición: {context.condition}",
    ]
    if context.alerts:
        lines.append("Alertas activas: " + ", ".join(a.phenomenon for a in context.alerts))
    else:
        lines.append("Alertas activas: ninguna")
    if context.pois:
        by_category: dict[str, list[str]] = defaultdict(list)
        for poi in context.pois:
            by_category[poi.category.value].append(poi.name)
        lines.append("Lugares de interés cercanos:")
        for category, names in by_category.items():
            lines.append(f"- {category}: {', '.join(names[:3])}")
    user = "\n".join(lines) + "\n\nDame un consejo breve y con gracia para hoy."
    return [{"role": "system", "content": SYSTEM_PROMPT}, {"role": "user", "content": user}]


def build_freeform_messages(prompt: str) -> Messages:
    return [{"role": "system", "content": FREEFORM_SYSTEM_PROMPT}, {"role": "user", "content": prompt}]


class NarrativeFetcher:
    """
    Produces narratives; never raises.

    `on_update` receives the cumulative text each time it grows. Its final
    call always carries exactly the text that was returned and cached.
    When a stream breaks after partial delivery, the non-streamed retry
    replaces the partial text instead of extending it.
    """

    def __init__(
        self,
        runtime: FetchRuntime,
        client: Optional[TextGenerationClient] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.runtime = runtime
        self.settings = runtime.settings
        self.client = client or TextGenerationClient.from_settings(runtime.settings, runtime.transport)
        self.rng = rng or random.Random()

    async def get_insight(self, context: NarrativeContext, on_update: Optional[UpdateFn] = None) -> str:
        try:
            context.validate()
        except InputValidationError as exc:
            logger.warning("Invalid narrative input: %s", exc.message, extra={"details": exc.details})
            _notify(on_update, INVALID_PARAMS_MESSAGE)
            return INVALID_PARAMS_MESSAGE
        return await self._resolve(
            context.fingerprint(),
            build_insight_messages(context),
            lambda: fallback_insight(context, self.rng),
            on_update,
        )

    async def get_freeform(self, prompt: str, on_update: Optional[UpdateFn] = None) -> str:
        if not (prompt or "").strip():
            _notify(on_update, INVALID_PARAMS_MESSAGE)
            return INVALID_PARAMS_MESSAGE
        digest = hashlib.sha256(prompt.strip().encode("utf-8")).hexdigest()[:16]
        return await self._resolve(
            f"freeform_{digest}",
            build_freeform_messages(prompt.strip()),
            lambda: FREEFORM_FALLBACK,
            on_update,
        )

    def stream_insight(self, context: NarrativeContext) -> TextStream:
        """
        Cumulative narrative texts as a stream.

        Cancelling the stream only stops delivery; the shared generation
        keeps running and still fills the cache.
        """
        stream = TextStream(maxsize=0)

        async def run() -> None:
            await self.get_insight(context, on_update=stream.push_nowait)
            stream.close()

        stream.producer = asyncio.ensure_future(run())
        return stream

    async def _resolve(
        self, key: str, messages: Messages, fallback: Callable[[], str], on_update: Optional[UpdateFn]
    ) -> str:
        cached = self.runtime.cache.get(CacheNamespace.AI_INSIGHTS, key)
        if isinstance(cached, str) and cached:
            logger.debug("Narrative cache hit %s", key)
            if on_update is not None:
                await self._replay(cached, on_update)
            return cached

        fingerprint = f"insight:{key}"
        joined = self.runtime.dedup.is_joinable(fingerprint)
        try:
            text = await self.runtime.dedup.join_or_start(
                fingerprint, lambda: self._generate(key, messages, fallback, on_update)
            )
        except Exception as exc:  # pragma: no cover
            logger.error("Narrative generation failed unexpectedly", extra={"key": key, "error": str(exc)})
            text = fallback()
            _notify(on_update, text)
            return text
        if joined:
            # joiners only see the finished text
            _notify(on_update, text)
        return text

    async def _replay(self, text: str, on_update: UpdateFn) -> None:
        """Deliver cached text in growing slices, as if it were streaming."""
        chunks = max(1, self.settings.narrative_replay_chunks)
        size = max(1, math.ceil(len(text) / chunks))
        end = 0
        while end < len(text):
            end = min(end + size, len(text))
            _notify(on_update, text[:end])
            if end < len(text):
                await self.runtime.sleep(self.settings.narrative_replay_interval_seconds)

    async def _generate(
        self, key: str, messages: Messages, fallback: Callable[[], str], on_update: Optional[UpdateFn]
    ) -> str:
        rt = self.runtime
        if rt.connectivity.is_offline() or not rt.throttle.can_call(THROTTLE_BUCKET):
            stale = rt.cache.get(CacheNamespace.AI_INSIGHTS, key, allow_stale=True)
            text = stale if isinstance(stale, str) and stale else fallback()
            logger.info("Narrative backend unavailable; serving %s", "stale text" if stale else "fallback")
            _notify(on_update, text)
            return text

        delivered = ""

        def forward(text: str) -> None:
            nonlocal delivered
            delivered = text
            _notify(on_update, text)

        text = ""
        try:
            text = strip_markdown_fences(await self._stream_primary(messages, forward))
        except (SkyGuideError, OSError, ValueError) as exc:
            logger.warning("Streaming narrative failed; trying non-streamed endpoints: %s", exc)
        if not text:
            try:
                text = strip_markdown_fences(await self.client.complete(messages, rt.retry))
            except SkyGuideError as exc:
                logger.error("Narrative endpoints exhausted", extra={"key": key, "error": exc.message})
                text = ""

        if text:
            rt.throttle.record_call(THROTTLE_BUCKET)
        else:
            text = fallback()
        if text != delivered:
            forward(text)
        rt.cache.set(CacheNamespace.AI_INSIGHTS, key, text, ttl=self.settings.insight_ttl_seconds)
        return text

    async def _stream_primary(self, messages: Messages, forward: Callable[[str], None]) -> str:
        stream = self.client.stream_chat(messages)
        parts: list[str] = []
        try:
            async for delta in stream:
                parts.append(delta)
                forward("".join(parts))
        finally:
            stream.cancel()
        return "".join(parts)


def _notify(on_update: Optional[UpdateFn], text: str) -> None:
    if on_update is None:
        return
    try:
        on_update(text)
    except Exception as exc:
        logger.warning("Narrative update callback failed: %s", exc)
