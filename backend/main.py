from websocket_manager import websocket_manager, ClientConnection
from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect, Request, Depends, Header
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError
from models import (
    HealthResponse, ChatRequest, ChatResponse, AnalyzeRequest, AnalyzeResponse, ExamRequest,
    ExamAudioRequest, ExamAudioResponse,
    VocabularyRequest, VocabularyResponse, VocabCard, SpeakingEvaluationRequest, SpeakingResult,
    InlineDocument, StartVoiceMessage, VoiceClientEnvelope
)
from config import Config
from roles import Role, resolve_role
from generation import (
    ContentProvider, HistoryMessage, InlineMedia, SpeechProvider, SpeechQuotaExceeded, SpeechUnavailable, TutorService
)
from generation.gemini import GeminiProvider
from generation.claude import ClaudeProvider
from generation.speech import GeminiSpeechProvider
from voice import (
    EmptyTranscript, LiveSession, LiveState, PermissionDenied, SessionAlreadyActive,
    SessionCallbacks, TranscriptLog, VoiceSessionManager
)
from voice.audio_utils import AudioFormat, pcm16_to_base64
from voice.browser import BrowserAudioOutput
from voice.context import VisualContext, build_lesson_context, fetch_visual
from voice.gemini_live import GeminiLiveTransport
from voice.grading import submit_for_grading
from voice.microphone import QueueMicrophone
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Optional
import binascii
import logging
import json
import uuid
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

"""
FastAPI server for the Mari German tutor
Lesson chat, exam generation, grading and the live voice bridge
"""

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

VERSION = "0.3.0"


@lru_cache()
def get_config() -> Config:
    config = Config()
    missing = config.validate()
    if missing:
        logger.warning(f"Missing configuration: {', '.join(missing)}")
    return config


@lru_cache()
def get_content_provider() -> ContentProvider:
    config = get_config()
    if config.CONTENT_PROVIDER == "claude":
        logger.info(f"Using Claude for content generation ({config.CHAT_MODEL})")
        return ClaudeProvider(
            config.CLAUDE_API_KEY or "",
            model=config.CHAT_MODEL,
            timeout=config.GENERATION_TIMEOUT_SECONDS
        )
    logger.info(f"Using Gemini for content generation ({config.GEMINI_MODEL})")
    return GeminiProvider(
        config.GEMINI_API_KEY or "",
        base_url=config.GEMINI_BASE_URL,
        model=config.GEMINI_MODEL,
        timeout=config.GENERATION_TIMEOUT_SECONDS
    )


@lru_cache()
def get_speech_provider() -> SpeechProvider:
    config = get_config()
    return GeminiSpeechProvider(
        config.GEMINI_API_KEY or "",
        base_url=config.GEMINI_BASE_URL,
        model=config.GEMINI_TTS_MODEL,
        timeout=config.GENERATION_TIMEOUT_SECONDS
    )


@lru_cache()
def get_tutor_service() -> TutorService:
    config = get_config()
    return TutorService(
        get_content_provider(),
        exam_model=config.GEMINI_EXAM_MODEL,
        timeout=config.GENERATION_TIMEOUT_SECONDS,
        speech=get_speech_provider()
    )


@lru_cache()
def get_voice_manager() -> VoiceSessionManager:
    config = get_config()

    def transport_factory():
        return GeminiLiveTransport(
            config.GEMINI_API_KEY or "",
            url=config.GEMINI_LIVE_URL,
            model=config.GEMINI_LIVE_MODEL
        )

    return VoiceSessionManager(
        transport_factory,
        settle_delay=config.voice_settle_delay,
        clamp_pcm=config.VOICE_CLAMP_PCM
    )


def get_caller_role(
    x_user_email: Optional[str] = Header(None),
    config: Config = Depends(get_config)
) -> Role:
    return resolve_role(x_user_email, config.ADMIN_EMAIL)


def require_admin(role: Role = Depends(get_caller_role)) -> Role:
    if role != Role.ADMIN:
        raise HTTPException(status_code=403, detail="Admin access required")
    return role


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await get_voice_manager().close_all_sessions()
    await get_content_provider().close()
    await get_speech_provider().close()


app = FastAPI(
    title="Mari AI Tutor",
    description="German B2 tutoring backend with live voice practice",
    version=VERSION,
    lifespan=lifespan
)

# CORS middleware to allow requests from frontend
# Note: CORSMiddleware in FastAPI also handles WebSocket connections
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    # Skip logging for WebSocket upgrade requests
    if request.url.path.startswith("/ws/"):
        return await call_next(request)

    logger.info(f"Incoming request: {request.method} {request.url.path}")
    response = await call_next(request)
    return response


def to_media(document: Optional[InlineDocument]) -> Optional[InlineMedia]:
    """Decode an inline document; 400 if the data is not base64"""
    if document is None:
        return None
    try:
        return InlineMedia.from_base64(document.data, document.mimeType)
    except (binascii.Error, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid document data: {e}")


@app.get("/health", response_model=HealthResponse)
async def health_check(voice_manager: VoiceSessionManager = Depends(get_voice_manager)):
    """
    Health check endpoint
    Returns the service status and the number of open voice sessions
    """
    return HealthResponse(status="ok", version=VERSION, voiceSessions=voice_manager.get_session_count())


@app.post("/chat", response_model=ChatResponse)
async def chat(request: ChatRequest, tutor: TutorService = Depends(get_tutor_service)):
    """
    Tutor reply for a lesson document

    Failures come back as the apology text rather than an error status.
    """
    history = [HistoryMessage(m.role, m.text) for m in request.history]
    text = await tutor.send_chat_message(request.message, to_media(request.document), history)
    return ChatResponse(text=text)


@app.post("/documents/analyze", response_model=AnalyzeResponse)
async def analyze_document(
    request: AnalyzeRequest,
    role: Role = Depends(require_admin),
    tutor: TutorService = Depends(get_tutor_service)
):
    """
    Master analysis of an uploaded lesson document (admin only)

    Returns:
        The analysis text used later as lesson and voice context
    """
    analysis = await tutor.analyze_document(to_media(request.document))
    if analysis is None:
        raise HTTPException(status_code=502, detail="Analyse fehlgeschlagen. Bitte erneut versuchen.")
    return AnalyzeResponse(analysis=analysis)


@app.post("/exams/generate")
async def generate_exam(
    request: ExamRequest,
    role: Role = Depends(require_admin),
    tutor: TutorService = Depends(get_tutor_service)
):
    """Generate a DTB B2 speaking exam (admin only)"""
    exam = await tutor.generate_exam(request.context, request.topic)
    if exam is None:
        raise HTTPException(status_code=502, detail="Prüfung konnte nicht erstellt werden. Bitte erneut versuchen.")
    return exam


@app.post("/exams/audio", response_model=ExamAudioResponse)
async def generate_exam_audio(request: ExamAudioRequest, tutor: TutorService = Depends(get_tutor_service)):
    """
    Read an exam listening script aloud

    Returns:
        Base64 PCM16 audio; 429 when the speech quota is used up, 503 when
        no audio could be produced
    """
    try:
        audio = await tutor.generate_exam_audio(request.text)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SpeechQuotaExceeded as e:
        raise HTTPException(status_code=429, detail=str(e))
    except SpeechUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))

    return ExamAudioResponse(
        audio=pcm16_to_base64(audio),
        sampleRate=AudioFormat.OUTPUT_SAMPLE_RATE,
        mimeType=AudioFormat.OUTPUT_MIME_TYPE
    )


@app.post("/vocabulary", response_model=VocabularyResponse)
async def generate_vocabulary(request: VocabularyRequest, tutor: TutorService = Depends(get_tutor_service)):
    """Vocabulary cards for a topic; an empty list when generation failed"""
    cards = []
    for raw in await tutor.generate_vocabulary(request.topic):
        try:
            cards.append(VocabCard.model_validate(raw))
        except ValidationError as e:
            logger.warning(f"Skipping malformed vocabulary card: {e}")
    return VocabularyResponse(cards=cards)


@app.post("/speaking/evaluate", response_model=SpeakingResult)
async def evaluate_speaking(request: SpeakingEvaluationRequest, tutor: TutorService = Depends(get_tutor_service)):
    """Grade a rendered speaking exam transcript"""
    try:
        return await submit_for_grading(request.transcript, tutor.evaluate_speaking)
    except EmptyTranscript:
        raise HTTPException(status_code=400, detail="Kein Transkript vorhanden. Bitte zuerst sprechen.")


class VoiceBridge:
    """
    Connects one browser WebSocket to the live session manager

    The browser owns microphone and speakers: binary frames are its
    captured float32 samples, and scheduled playback is sent back as
    timed audio messages.
    """

    def __init__(
        self,
        client_id: str,
        connection: ClientConnection,
        voice_manager: VoiceSessionManager,
        tutor: TutorService
    ):
        self.client_id = client_id
        self.connection = connection
        self.voice_manager = voice_manager
        self.tutor = tutor
        self.microphone: Optional[QueueMicrophone] = None
        self.session: Optional[LiveSession] = None

    def send_error(self, code: str, message: str):
        self.connection.send_nowait({"type": "error", "code": code, "message": message})

    def send_state(self, state: LiveState):
        self.connection.send_nowait({"type": "state", "state": state.value})

    def send_transcript(self, transcript: TranscriptLog):
        self.connection.send_nowait({
            "type": "transcript",
            "turns": transcript.to_list(),
            "text": transcript.render()
        })

    def send_status(self):
        session = self.voice_manager.get_session(self.client_id)
        self.connection.send_nowait({
            "type": "status",
            "state": self.voice_manager.get_state(self.client_id).value,
            "session": session.to_dict() if session is not None else None
        })

    def on_session_error(self, error: Exception):
        self.send_error("connection_error", "Verbindung unterbrochen. Bitte erneut starten.")

    async def handle_text(self, raw: str):
        try:
            envelope = VoiceClientEnvelope.model_validate({"message": json.loads(raw)})
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"[{self.client_id}] Invalid voice message: {e}")
            self.send_error("bad_request", "Ungültige Nachricht")
            return

        message = envelope.message
        if message.type == "start":
            await self.start(message)
        elif message.type == "stop":
            await self.stop()
        elif message.type == "evaluate":
            await self.evaluate()
        elif message.type == "status":
            self.send_status()

    def feed_audio(self, data: bytes):
        if self.microphone is not None:
            self.microphone.feed(data)

    async def start(self, message: StartVoiceMessage):
        context_text = message.context or build_lesson_context(message.messages)

        visual = None
        if message.visual is not None:
            visual = VisualContext.from_base64(message.visual.data.split(",")[-1], message.visual.mimeType)
        if visual is None and message.imageUrl:
            visual = await fetch_visual(message.imageUrl)

        microphone = QueueMicrophone(granted=message.microphone)
        callbacks = SessionCallbacks(
            on_state_change=self.send_state,
            on_transcript=self.send_transcript,
            on_error=self.on_session_error
        )

        try:
            session = await self.voice_manager.start_session(
                self.client_id,
                role=message.role,
                context_text=context_text,
                microphone=microphone,
                output=BrowserAudioOutput(self.connection.send_nowait),
                callbacks=callbacks,
                visual=visual
            )
        except SessionAlreadyActive:
            self.send_error("session_active", "Es läuft bereits ein Gespräch.")
            return
        except PermissionDenied:
            self.send_error("permission_denied", "Mikrofon-Zugriff verweigert.")
            return

        self.microphone = microphone
        self.session = session

    async def stop(self):
        await self.voice_manager.stop_session(self.client_id)
        self.microphone = None
        self.send_state(self.voice_manager.get_state(self.client_id))

    async def evaluate(self):
        """Stop the conversation and grade what was said"""
        session = self.session
        await self.stop()

        transcript = session.transcript if session is not None else TranscriptLog()
        try:
            result = await submit_for_grading(transcript, self.tutor.evaluate_speaking)
        except EmptyTranscript:
            self.send_error("empty_transcript", "Kein Transkript vorhanden. Bitte zuerst sprechen.")
            return

        self.connection.send_nowait({"type": "evaluation", "result": result})

    async def close(self):
        await self.voice_manager.stop_session(self.client_id)
        self.microphone = None


@app.websocket("/ws/voice")
async def websocket_voice(
    websocket: WebSocket,
    voice_manager: VoiceSessionManager = Depends(get_voice_manager),
    tutor: TutorService = Depends(get_tutor_service)
):
    """
    Live voice bridge

    Args:
        websocket: WebSocket connection
    """
    client_id = str(uuid.uuid4())
    logger.info(f"[WebSocket] Voice connection attempt from {websocket.client}")

    connection = await websocket_manager.connect(websocket, client_id)
    bridge = VoiceBridge(client_id, connection, voice_manager, tutor)
    bridge.send_state(LiveState.IDLE)

    try:
        while True:
            message = await websocket.receive()

            if message.get("type") == "websocket.disconnect":
                logger.info(f"[WebSocket] Client {client_id} disconnected")
                break

            if message.get("bytes") is not None:
                bridge.feed_audio(message["bytes"])
            elif message.get("text") is not None:
                await bridge.handle_text(message["text"])
    except WebSocketDisconnect:
        logger.info(f"[WebSocket] Disconnected for client {client_id}")
    except Exception as e:
        logger.error(f"[WebSocket] Error for client {client_id}: {e}", exc_info=True)
    finally:
        await bridge.close()
        await websocket_manager.disconnect(client_id)
        logger.info(f"[WebSocket] Cleanup complete for client {client_id}")


if __name__ == "__main__":
    import uvicorn
    import os

    # Get port from environment or default to 8001
    port = int(os.getenv("PORT", 8001))

    logger.info(f"Starting Mari AI backend on port {port}")
    uvicorn.run(
        "main:app",  # Use string import path instead of app object
        host="0.0.0.0",
        port=port,
        ws="auto",  # Auto-detect WebSocket implementation (more compatible)
        log_level="info"
    )
