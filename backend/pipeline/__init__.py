"""Очередь транскрипции: хранилище задач, конвейер одной задачи и последовательный обработчик.

Модули импортируются напрямую, например ``from pipeline.runner import QueueRunner``.
"""
