from typing import Any, Dict, List, Optional, Sequence

from models import Topic, TranscriptResult, TranscriptSegment


def _find_sentiment(utterance: Dict[str, Any], results: Sequence[Dict[str, Any]]) -> Optional[str]:
    """Первое предложение с тональностью, целиком попадающее в реплику"""
    start = utterance.get("start", 0)
    end = utterance.get("end", 0)
    for item in results:
        if item.get("start", -1) >= start and item.get("end", 0) <= end:
            sentiment = str(item.get("sentiment", "")).lower()
            if sentiment in ("positive", "neutral", "negative"):
                return sentiment
    return None


def parse_transcript_response(payload: Dict[str, Any], speaker_names: Sequence[str] = ()) -> TranscriptResult:
    """
    Ответ AssemblyAI -> TranscriptResult

    Метки спикеров (A, B, ...) заменяются на имена из speaker_names
    в порядке первого появления.
    """
    segments: List[TranscriptSegment] = []
    speaker_map: Dict[str, str] = {}
    sentiments = payload.get("sentiment_analysis_results") or []

    for utterance in payload.get("utterances") or []:
        label = str(utterance.get("speaker", ""))
        if label not in speaker_map:
            index = len(speaker_map)
            if index < len(speaker_names) and speaker_names[index]:
                speaker_map[label] = speaker_names[index]
            else:
                speaker_map[label] = label

        segments.append(TranscriptSegment(
            speaker=speaker_map[label],
            text=utterance.get("text", ""),
            start=int(utterance.get("start", 0)),
            end=int(utterance.get("end", 0)),
            sentiment=_find_sentiment(utterance, sentiments) if sentiments else None,
        ))

    # Нет диаризации - весь текст одним сегментом
    if not segments and payload.get("text"):
        segments.append(TranscriptSegment(speaker="A", text=payload["text"], start=0, end=0))

    topics: List[Topic] = []
    categories = (payload.get("iab_categories_result") or {}).get("summary") or {}
    for label, relevance in categories.items():
        topics.append(Topic(label=label, relevance=float(relevance) * 100))
    topics.sort(key=lambda t: t.relevance, reverse=True)

    highlights = (payload.get("auto_highlights_result") or {}).get("results") or []
    key_phrases = [h["text"] for h in sorted(highlights, key=lambda h: h.get("rank", 0), reverse=True) if h.get("text")]

    return TranscriptResult(
        segments=segments,
        summary=payload.get("summary") or None,
        topics=topics or None,
        key_phrases=key_phrases or None,
    )
