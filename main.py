#!/usr/bin/env python3
"""
Exam Tutor - Main Entry Point

Command-line access to material indexing, tutor retrieval, session grading
and storage reporting.

Usage:
    # Create an exam from JSON files
    python main.py create-exam --title "Economics 101" --questions questions.json --rubric rubric.json

    # Index a material's extracted text
    python main.py index --exam EXAM_ID --file lecture1.txt

    # Show the tutor context for a question
    python main.py search --exam EXAM_ID "How is price determined?"

    # Grade a submitted session
    python main.py grade --session SESSION_ID
"""
import argparse
import sys
import json
import logging
from pathlib import Path
from typing import Optional

import config

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def _database():
    from exam_tutor.storage import Database

    db = Database(config.DATABASE_URL)
    db.create_all()
    return db


def _vector_components():
    from exam_tutor.embeddings import Embedder
    from exam_tutor.vector_store import ChromaStore

    logger.info("Loading embedding model...")
    embedder = Embedder()
    store = ChromaStore(embedding_model=embedder.model_tag, embedding_dim=embedder.embedding_dim)
    return embedder, store


def _orchestrator(verbose: bool = False):
    from exam_tutor.llm import OllamaClient
    from exam_tutor.storage import ExamRepository, GradeRepository
    from exam_tutor.grading import GradingOrchestrator

    db = _database()
    logger.info("Connecting to Ollama...")
    llm = OllamaClient()
    return GradingOrchestrator(
        llm, ExamRepository(db), GradeRepository(db), verbose=verbose
    )


def _print_json(data):
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def _load_json(path: Optional[str]):
    if not path:
        return None
    with open(path, encoding='utf-8') as f:
        return json.load(f)


def run_create_exam(title: str, questions_path: Optional[str], rubric_path: Optional[str]):
    """Create an exam from question and rubric JSON files."""
    from exam_tutor.storage import ExamRepository

    exam_id = ExamRepository(_database()).create_exam(
        title, _load_json(questions_path), _load_json(rubric_path)
    )
    print(exam_id)


def run_index(exam_id: str, file_path: str, file_url: Optional[str] = None, verbose: bool = False):
    """Index one extracted-text file as an exam material."""
    from exam_tutor.ingestion import MaterialIndexer
    from exam_tutor.storage import ExamRepository

    path = Path(file_path)
    text = path.read_text(encoding='utf-8')

    embedder, store = _vector_components()
    indexer = MaterialIndexer(embedder, store, ExamRepository(_database()), verbose=verbose)
    result = indexer.index_material(exam_id, file_url or path.resolve().as_uri(), path.name, text)

    if result.indexed:
        logger.info(f"✅ {result.file_name}: {result.chunks_stored} chunks from {result.characters} characters")
    else:
        logger.warning(f"⚠️ {result.file_name} not indexed: {result.skipped_reason}")


def run_search(exam_id: str, question: str, method: str = "auto", show_prompt: bool = False):
    """Print the retrieval context (and optionally the tutor prompt) for a question."""
    from exam_tutor.retrieval import ContextBuilder, KeywordContextRetriever
    from exam_tutor.storage import ExamRepository
    from exam_tutor.prompts import PromptTemplates
    from exam_tutor.criteria import ExamQuestion

    exam_repo = ExamRepository(_database())

    if method == "keyword":
        outcome = KeywordContextRetriever(exam_repo.get_material_texts(exam_id)).search(question)
    else:
        embedder, store = _vector_components()
        builder = ContextBuilder(embedder, store, material_loader=exam_repo.get_material_texts)
        outcome = builder.build(question, exam_id)

    print(f"Method: {outcome.method} | results: {outcome.results_count} | "
          f"top similarity: {outcome.top_similarity} | low confidence: {outcome.low_confidence}")
    print("-" * 60)

    if show_prompt:
        exam = exam_repo.get_exam(exam_id)
        print(PromptTemplates.format_tutor_system(
            exam.title if exam else "",
            ExamQuestion(idx=0, prompt=question),
            exam.rubric if exam else [],
            outcome.text
        ))
    else:
        print(outcome.text or "(no reference material found)")


def run_ask(session_id: str, q_idx: int, message: str):
    """Send a student message to the tutor and print the reply."""
    from exam_tutor.llm import OllamaClient
    from exam_tutor.retrieval import ContextBuilder
    from exam_tutor.storage import ExamRepository, GradeRepository
    from exam_tutor.tutor import TutorAssistant

    db = _database()
    exam_repo = ExamRepository(db)
    embedder, store = _vector_components()
    builder = ContextBuilder(embedder, store, material_loader=exam_repo.get_material_texts)

    tutor = TutorAssistant(OllamaClient(), builder, exam_repo, GradeRepository(db))
    reply = tutor.reply(session_id, q_idx, message)

    print(f"[{reply.retrieval.method}, {reply.retrieval.results_count} passages]")
    print(reply.text)


def run_grade(session_id: str, regrade: bool = False, background: bool = False, verbose: bool = False):
    """Grade (or regrade) a session and print its report."""
    orchestrator = _orchestrator(verbose)

    if background:
        from exam_tutor.grading import GradingQueue

        with GradingQueue(orchestrator) as grading_queue:
            job = grading_queue.submit_regrade(session_id) if regrade else grading_queue.submit(session_id)
            logger.info(f"Job {job.job_id} queued; waiting for completion")
            job.wait()
        logger.info(f"Job {job.job_id}: {job.status.value} after {job.attempts} attempt(s)")
        if job.error:
            logger.error(f"❌ {job.error}")
    else:
        run = orchestrator.regrade(session_id) if regrade else orchestrator.trigger_grading(session_id)
        logger.info(f"Run {run.status}{': ' + run.reason if run.reason else ''}")

    _print_json(orchestrator.session_report(session_id).to_dict())


def run_override(session_id: str, q_idx: int, score: int, comment: str):
    orchestrator = _orchestrator()
    grade = orchestrator.override_grade(session_id, q_idx, score, comment)
    _print_json(grade.to_dict())


def run_report(session_id: Optional[str], exam_id: Optional[str]):
    """Print a session report, or the finalised grades of an exam."""
    from exam_tutor.storage import ExamRepository, GradeRepository
    from exam_tutor.grading import GradingOrchestrator

    db = _database()
    # Reports never call the LLM
    orchestrator = GradingOrchestrator(None, ExamRepository(db), GradeRepository(db))

    if session_id:
        _print_json(orchestrator.session_report(session_id).to_dict())
    if exam_id:
        _print_json(orchestrator.final_grades(exam_id))
    _print_json({'storage': orchestrator.compression_report(session_id)})


def run_compression_test(file_path: str):
    """Compress a text or JSON file and print the payload metadata."""
    from exam_tutor.compression import CompressionCodec

    raw = Path(file_path).read_text(encoding='utf-8')
    try:
        value = json.loads(raw)
    except ValueError:
        value = raw

    codec = CompressionCodec()
    payload = codec.compress(value)
    restored = codec.decompress(payload.data)

    _print_json({
        'metadata': payload.metadata.to_dict(),
        'round_trip_ok': restored == value,
        'space_saved': payload.metadata.original_size - payload.metadata.compressed_size,
    })


def run_stale(reindex: bool = False):
    """List (and optionally reindex) materials embedded with another model."""
    from exam_tutor.ingestion import MaterialIndexer
    from exam_tutor.storage import ExamRepository

    embedder, store = _vector_components()
    stale = store.stale_materials(embedder.model_tag)
    _print_json([{'exam_id': e, 'file_url': f} for e, f in stale])

    if reindex and stale:
        indexer = MaterialIndexer(embedder, store, ExamRepository(_database()))
        report = indexer.reindex_stale()
        logger.info(f"Reindexed {len(report.reindexed)}, missing text for {len(report.missing_text)}")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Exam Tutor - retrieval and grading for AI-assisted exams",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python main.py index --exam EXAM_ID --file lecture1.txt
    python main.py search --exam EXAM_ID "How is price determined?" --prompt
    python main.py ask --session SESSION_ID --question 0 "Can I assume zero tax?"
    python main.py grade --session SESSION_ID --background
    python main.py override --session SESSION_ID --question 0 --score 85 --comment "Good reasoning"
    python main.py report --exam EXAM_ID
    python main.py compression-test transcript.json
        """
    )
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable verbose logging')

    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    exam_parser = subparsers.add_parser('create-exam', help='Create an exam')
    exam_parser.add_argument('--title', required=True)
    exam_parser.add_argument('--questions', help='JSON list of questions')
    exam_parser.add_argument('--rubric', help='JSON list of rubric items')

    index_parser = subparsers.add_parser('index', help='Index extracted material text')
    index_parser.add_argument('--exam', '-e', required=True, help='Exam id')
    index_parser.add_argument('--file', '-f', required=True, help='Plain-text file of extracted material')
    index_parser.add_argument('--url', help='Material URL (defaults to the file URI)')

    search_parser = subparsers.add_parser('search', help='Retrieve tutor context for a question')
    search_parser.add_argument('question')
    search_parser.add_argument('--exam', '-e', required=True, help='Exam id')
    search_parser.add_argument('--method', choices=['auto', 'keyword'], default='auto')
    search_parser.add_argument('--prompt', action='store_true', help='Print the full tutor system prompt')

    ask_parser = subparsers.add_parser('ask', help='Ask the exam tutor a question')
    ask_parser.add_argument('message')
    ask_parser.add_argument('--session', '-s', required=True)
    ask_parser.add_argument('--question', '-q', type=int, default=0, help='Question index')

    grade_parser = subparsers.add_parser('grade', help='Grade a submitted session')
    grade_parser.add_argument('--session', '-s', required=True)
    grade_parser.add_argument('--regrade', action='store_true', help='Regenerate automatic grades')
    grade_parser.add_argument('--background', action='store_true', help='Run through the grading queue')

    override_parser = subparsers.add_parser('override', help='Set a manual grade')
    override_parser.add_argument('--session', '-s', required=True)
    override_parser.add_argument('--question', '-q', type=int, required=True)
    override_parser.add_argument('--score', type=int, required=True)
    override_parser.add_argument('--comment', default='')

    report_parser = subparsers.add_parser('report', help='Print grade and storage reports')
    report_parser.add_argument('--session', '-s')
    report_parser.add_argument('--exam', '-e', help='Print finalised grades for an exam')

    compression_parser = subparsers.add_parser('compression-test', help='Compress a file and show metadata')
    compression_parser.add_argument('file')

    stale_parser = subparsers.add_parser('stale', help='List materials embedded with another model')
    stale_parser.add_argument('--reindex', action='store_true')

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.command == 'create-exam':
        run_create_exam(args.title, args.questions, args.rubric)
    elif args.command == 'index':
        run_index(args.exam, args.file, args.url, args.verbose)
    elif args.command == 'search':
        run_search(args.exam, args.question, args.method, args.prompt)
    elif args.command == 'ask':
        run_ask(args.session, args.question, args.message)
    elif args.command == 'grade':
        run_grade(args.session, args.regrade, args.background, args.verbose)
    elif args.command == 'override':
        run_override(args.session, args.question, args.score, args.comment)
    elif args.command == 'report':
        if not args.session and not args.exam:
            report_parser.error("give --session and/or --exam")
        run_report(args.session, args.exam)
    elif args.command == 'compression-test':
        run_compression_test(args.file)
    elif args.command == 'stale':
        run_stale(args.reindex)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
