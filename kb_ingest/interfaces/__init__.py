"""Abstract interfaces for every collaborator the pipeline depends on.

    Interface               ->  Concrete implementations (kb_ingest/providers/)
    -------------------------------------------------------------------------
    ILLMProvider            ->  OpenAILLMProvider
    IEmbeddingProvider      ->  OpenAIEmbeddingProvider
    ITranscriptionProvider  ->  WhisperAPIProvider
    ITranscriptProvider     ->  YouTubeTranscriptProvider
    IBlobStore              ->  LocalBlobStore, InMemoryBlobStore
    IDocumentStore          ->  SQLiteDocumentStore, InMemoryDocumentStore
    IChunkStore             ->  SQLiteChunkStore, InMemoryChunkStore
    ISummaryStore           ->  SQLiteSummaryStore, InMemorySummaryStore
    IProgressReporter       ->  StageProgressReporter (kb_ingest/pipeline/)
"""

from kb_ingest.interfaces.blob_store import IBlobStore
from kb_ingest.interfaces.chunk_store import IChunkStore
from kb_ingest.interfaces.document_store import IDocumentStore
from kb_ingest.interfaces.embedding_provider import IEmbeddingProvider
from kb_ingest.interfaces.llm_provider import ILLMProvider
from kb_ingest.interfaces.progress_reporter import IProgressReporter, NullProgressReporter
from kb_ingest.interfaces.summary_store import ISummaryStore
from kb_ingest.interfaces.transcript_provider import ITranscriptProvider
from kb_ingest.interfaces.transcription_provider import ITranscriptionProvider

__all__ = [
    "IBlobStore",
    "IChunkStore",
    "IDocumentStore",
    "IEmbeddingProvider",
    "ILLMProvider",
    "IProgressReporter",
    "ISummaryStore",
    "ITranscriptProvider",
    "ITranscriptionProvider",
    "NullProgressReporter",
]
