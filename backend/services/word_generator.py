import io
import os
import re
import logging
from pathlib import Path

from docx import Document
from docx.shared import Pt, RGBColor, Inches
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.oxml import OxmlElement
from docx.oxml.ns import qn

from models import ExportOptions, TranscriptResult
from pipeline.errors import GenerationError

logger = logging.getLogger(__name__)

# Цвета спикеров по кругу
SPEAKER_COLORS = [
    RGBColor(0x25, 0x63, 0xEB),  # blue
    RGBColor(0xDC, 0x26, 0x26),  # red
    RGBColor(0x16, 0xA3, 0x4A),  # green
    RGBColor(0x93, 0x33, 0xEA),  # purple
    RGBColor(0xEA, 0x58, 0x0C),  # orange
    RGBColor(0x08, 0x91, 0xB2),  # cyan
]
GREY = RGBColor(0x66, 0x66, 0x66)
LIGHT_GREY = RGBColor(0x99, 0x99, 0x99)

SENTIMENT_EMOJI = {
    "positive": "😊",
    "neutral": "😐",
    "negative": "😟",
}

MAX_TOPICS = 5
MAX_NAME_ATTEMPTS = 100


def format_timestamp(ms: int) -> str:
    """Миллисекунды -> [HH:MM:SS]"""
    total_seconds = ms // 1000
    hours, rest = divmod(total_seconds, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"[{hours:02d}:{minutes:02d}:{seconds:02d}]"


def _add_horizontal_rule(doc) -> None:
    paragraph = doc.add_paragraph()
    p_pr = paragraph._p.get_or_add_pPr()
    borders = OxmlElement("w:pBdr")
    bottom = OxmlElement("w:bottom")
    bottom.set(qn("w:val"), "single")
    bottom.set(qn("w:sz"), "6")
    bottom.set(qn("w:space"), "1")
    bottom.set(qn("w:color"), "CCCCCC")
    borders.append(bottom)
    p_pr.append(borders)


def _add_section_header(doc, title: str) -> None:
    paragraph = doc.add_paragraph()
    run = paragraph.add_run(title)
    run.bold = True
    run.font.size = Pt(12)
    run.font.all_caps = True
    paragraph.paragraph_format.space_before = Pt(20)
    paragraph.paragraph_format.space_after = Pt(10)


def generate_word(transcript: TranscriptResult, options: ExportOptions) -> bytes:
    """
    Генерация Word документа с транскриптом

    Args:
        transcript: Разобранный ответ AssemblyAI
        options: Какие секции включать, имя файла и дата

    Returns:
        Байты .docx файла
    """
    try:
        doc = Document()

        style = doc.styles["Normal"]
        style.font.name = "Calibri"
        style.font.size = Pt(11)
        style.paragraph_format.line_spacing = 1.15

        for section in doc.sections:
            section.top_margin = section.bottom_margin = Inches(1)
            section.left_margin = section.right_margin = Inches(1)

        # === Заголовок ===
        doc.add_heading(Path(options.filename).stem, 0)

        date_para = doc.add_paragraph()
        date_run = date_para.add_run(f"Transcribed on {options.transcribed_date.strftime('%B %d, %Y')}")
        date_run.font.color.rgb = GREY

        # === Summary ===
        if options.include_summary and transcript.summary:
            _add_horizontal_rule(doc)
            _add_section_header(doc, "Summary")
            for line in transcript.summary.split("\n"):
                point = line.strip()
                if not point:
                    continue
                para = doc.add_paragraph(point if point.startswith("•") else f"• {point}")
                para.paragraph_format.left_indent = Inches(0.25)

        # === Темы ===
        if options.include_topics and transcript.topics:
            _add_horizontal_rule(doc)
            _add_section_header(doc, "Topics Detected")
            for topic in transcript.topics[:MAX_TOPICS]:
                para = doc.add_paragraph()
                para.add_run(f"{topic.label} ")
                relevance = para.add_run(f"({round(topic.relevance)}%)")
                relevance.font.size = Pt(10)
                relevance.font.color.rgb = GREY
                para.paragraph_format.left_indent = Inches(0.25)

        # === Ключевые фразы ===
        if options.include_key_phrases and transcript.key_phrases:
            _add_horizontal_rule(doc)
            _add_section_header(doc, "Key Phrases")
            para = doc.add_paragraph(", ".join(transcript.key_phrases))
            para.paragraph_format.left_indent = Inches(0.25)

        # === Транскрипт ===
        _add_horizontal_rule(doc)
        _add_section_header(doc, "Transcript")

        speaker_colors = {}
        for segment in transcript.segments:
            if segment.speaker not in speaker_colors:
                speaker_colors[segment.speaker] = SPEAKER_COLORS[len(speaker_colors) % len(SPEAKER_COLORS)]

            speaker_para = doc.add_paragraph()
            speaker_run = speaker_para.add_run(f"[{segment.speaker}] ")
            speaker_run.bold = True
            speaker_run.font.color.rgb = speaker_colors[segment.speaker]

            time_run = speaker_para.add_run(format_timestamp(segment.start))
            time_run.font.size = Pt(10)
            time_run.font.color.rgb = LIGHT_GREY

            if options.include_sentiment and segment.sentiment:
                speaker_para.add_run(f" {SENTIMENT_EMOJI.get(segment.sentiment, '')}")
            speaker_para.paragraph_format.space_before = Pt(10)
            speaker_para.paragraph_format.space_after = Pt(4)

            text_para = doc.add_paragraph(segment.text)
            text_para.alignment = WD_ALIGN_PARAGRAPH.LEFT
            text_para.paragraph_format.space_after = Pt(8)

        buffer = io.BytesIO()
        doc.save(buffer)
        data = buffer.getvalue()
        logger.info(f"Word document generated: {len(data)} bytes, {len(transcript.segments)} segments")
        return data

    except Exception as e:
        logger.error(f"Word generation failed: {e}")
        raise GenerationError(f"Failed to generate Word document: {e}") from e


def unique_path(output_path: str) -> str:
    """report.docx -> report_1.docx -> report_2.docx ... если файл уже есть"""
    if not os.path.exists(output_path):
        return output_path

    base, ext = os.path.splitext(output_path)
    base = re.sub(r"_\d+$", "", base)
    for counter in range(1, MAX_NAME_ATTEMPTS + 1):
        candidate = f"{base}_{counter}{ext}"
        if not os.path.exists(candidate):
            return candidate
    raise GenerationError("Too many files with the same name")


def save_document(data: bytes, output_path: str) -> str:
    """Сохранение документа, возвращает фактический путь"""
    final_path = unique_path(output_path)
    try:
        os.makedirs(os.path.dirname(final_path) or ".", exist_ok=True)
        with open(final_path, "wb") as f:
            f.write(data)
    except OSError as e:
        logger.error(f"Failed to save document {final_path}: {e}")
        raise GenerationError(f"Failed to save document: {e}") from e

    logger.info(f"Word file created: {final_path}")
    return final_path
