"""
MedScribe AI - Consultation Audio Transcription and Clinical Assistance Service

A FastAPI-based microservice that transcribes consultation audio, structures
it into SOAP notes and produces symptom analyses and treatment plans using
Gemini or OpenAI.
"""

__version__ = "1.0.0"
