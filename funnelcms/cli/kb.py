"""
Knowledge base commands for FunnelCMS CLI
"""

from pathlib import Path
from typing import Optional

import click

from ..core.models import DocumentStatus
from ..services.knowledge_base import KnowledgeBaseService

DOC_ICONS = {
    DocumentStatus.READY: "✅",
    DocumentStatus.PROCESSING: "⏳",
    DocumentStatus.PENDING: "🕐",
    DocumentStatus.FAILED: "❌",
}


@click.group('kb')
def kb_group():
    """Manage knowledge bases and documents"""
    pass


@kb_group.command('list')
def list_knowledge_bases():
    """List knowledge bases with document counts"""
    try:
        kbs = KnowledgeBaseService().list_knowledge_bases()

        if not kbs:
            click.echo("No knowledge bases found.")
            click.echo("\nCreate one with: fcms kb create <name>")
            return

        click.echo(f"\n{'='*60}")
        click.echo(f"📚 Knowledge Bases ({len(kbs)})")
        click.echo(f"{'='*60}\n")

        for kb in kbs:
            click.echo(f"{kb.name} ({kb.document_count} documents)")
            click.echo(f"   ID: {kb.id}")
            if kb.description:
                click.echo(f"   Description: {kb.description}")
            click.echo()

    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()


@kb_group.command('create')
@click.argument('name')
@click.option('--description', '-d', help='Description')
def create_knowledge_base(name: str, description: Optional[str]):
    """Create a knowledge base"""
    try:
        kb = KnowledgeBaseService().create_knowledge_base(name, description)
        click.echo(f"✅ Created knowledge base '{kb.name}'")
        click.echo(f"   ID: {kb.id}")

    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()


@kb_group.command('add')
@click.argument('kb_id')
@click.argument('file', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option('--title', '-t', help='Document title (default: file name)')
def add_document(kb_id: str, file: Path, title: Optional[str]):
    """
    Ingest a text or markdown file: chunk, embed and store it

    Examples:
        fcms kb add <kb-id> notes/market-research.md
    """
    try:
        content = file.read_text(encoding="utf-8")
        click.echo(f"📄 Ingesting {file.name} ({len(content.split())} words)...")

        document = KnowledgeBaseService().add_text_document(
            kb_id,
            title or file.stem,
            content,
            source_type="file",
            content_type="text/markdown" if file.suffix == ".md" else "text/plain",
        )
        click.echo(f"✅ {document.title}: {document.chunk_count} chunks embedded")
        click.echo(f"   ID: {document.id}")

    except Exception as e:
        click.echo(f"❌ Ingestion failed: {e}", err=True)
        raise click.Abort()


@kb_group.command('docs')
@click.argument('kb_id')
@click.option('--status', type=click.Choice([s.value for s in DocumentStatus]), help='Filter by status')
def list_documents(kb_id: str, status: Optional[str]):
    """List a knowledge base's documents"""
    try:
        docs = KnowledgeBaseService().list_documents(kb_id=kb_id, status=status)

        click.echo(f"\n{'='*60}")
        click.echo(f"📄 Documents ({len(docs)})")
        click.echo(f"{'='*60}\n")

        for doc in docs:
            click.echo(f"{DOC_ICONS.get(doc.status, '')} {doc.title}")
            click.echo(f"   ID: {doc.id}")
            click.echo(f"   Chunks: {doc.chunk_count} · Status: {doc.status.value}")
            if doc.metadata.get("error"):
                click.echo(f"   Error: {doc.metadata['error']}")

    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()


@kb_group.command('delete-doc')
@click.argument('document_id')
def delete_document(document_id: str):
    """Delete a document and its chunks"""
    try:
        if KnowledgeBaseService().delete_document(document_id):
            click.echo(f"✅ Deleted document {document_id}")
        else:
            click.echo(f"❌ Document {document_id} not found", err=True)
            raise click.Abort()

    except click.Abort:
        raise
    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()


@kb_group.command('stats')
@click.option('--kb', 'kb_id', help='Limit to one knowledge base')
def stats(kb_id: Optional[str]):
    """Document and chunk counts"""
    try:
        result = KnowledgeBaseService().get_stats(kb_id)

        click.echo(f"\n📊 Documents: {result['document_count']}")
        click.echo(f"   Chunks: {result['chunk_count']}")
        for status, count in sorted(result["by_status"].items()):
            click.echo(f"   {status}: {count}")

    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()


@kb_group.command('search')
@click.argument('query')
@click.option('--kb', 'kb_id', help='Knowledge base to search')
@click.option('--document', 'document_id', help='Document to search')
@click.option('--project', 'project_id', help='Project to search')
@click.option('--limit', '-n', default=5, type=int, help='Number of results (default: 5)')
def search(query: str, kb_id: Optional[str], document_id: Optional[str], project_id: Optional[str], limit: int):
    """
    Semantic search in one knowledge base, document or project

    Examples:
        fcms kb search "buyer objections" --kb <kb-id>
    """
    try:
        results = KnowledgeBaseService().search(
            query, kb_id=kb_id, document_id=document_id, project_id=project_id, limit=limit
        )

        if not results:
            click.echo("No matching chunks.")
            return

        click.echo(f"\n🔍 {len(results)} results for '{query}'\n")
        for i, chunk in enumerate(results, start=1):
            click.echo(f"{i}. [{chunk.similarity_score:.2f}] {chunk.document_title or chunk.document_id}")
            click.echo(f"   {chunk.content[:200]}")
            click.echo()

    except Exception as e:
        click.echo(f"❌ Search failed: {e}", err=True)
        raise click.Abort()


@kb_group.command('register-upload')
@click.argument('kb_id')
@click.argument('filename')
@click.option('--content-type', help='MIME type (default: application/octet-stream)')
@click.option('--size', type=int, help='File size in bytes')
def register_upload(kb_id: str, filename: str, content_type: Optional[str], size: Optional[int]):
    """
    Record an uploaded file for the external ingester

    Prints the storage path the file should be written to. The document
    stays "processing" until the ingester reports back.

    Examples:
        fcms kb register-upload <kb-id> "Market Report.pdf" --content-type application/pdf
    """
    try:
        document = KnowledgeBaseService().register_upload(
            kb_id, filename, content_type=content_type, size=size
        )
        click.echo(f"✅ Registered {document.title}")
        click.echo(f"   ID: {document.id}")
        click.echo(f"   Storage path: {document.storage_path}")

    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()


@kb_group.command('doc-status')
@click.argument('document_id')
@click.argument('status', type=click.Choice([s.value for s in DocumentStatus]))
@click.option('--chunks', type=int, help='Chunk count')
@click.option('--embeddings', type=int, help='Embedding count')
@click.option('--error', help='Failure message')
def document_status(document_id: str, status: str, chunks: Optional[int],
                    embeddings: Optional[int], error: Optional[str]):
    """
    Record ingestion progress for an uploaded document

    Examples:
        fcms kb doc-status <doc-id> ready --chunks 42 --embeddings 42
    """
    try:
        document = KnowledgeBaseService().update_document_status(
            document_id, status, chunk_count=chunks, embedding_count=embeddings, error=error
        )
        click.echo(f"{DOC_ICONS.get(document.status, '')} {document.title} is {document.status.value}")

    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()


@kb_group.command('download')
@click.argument('document_id')
@click.option('--output', '-o', type=click.Path(dir_okay=False, path_type=Path),
              help='Destination file (default: the document file name)')
def download_document(document_id: str, output: Optional[Path]):
    """
    Save a document's file locally

    Examples:
        fcms kb download <doc-id> -o report.pdf
    """
    try:
        download = KnowledgeBaseService().download_document(document_id)
        target = output or Path(download.filename)
        target.write_bytes(download.content)
        click.echo(f"✅ Saved {target} ({len(download.content)} bytes)")

    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()
