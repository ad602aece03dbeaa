"""Setup script for the voice assistant."""

from setuptools import setup, find_packages

setup(
    name="voice-assistant",
    version="1.0.0",
    description="Hands-free voice conversations with an AI model",
    author="Your Name",
    packages=find_packages(include=['voice_assistant', 'voice_assistant.*']),
    python_requires=">=3.11",
    install_requires=[
        "python-dotenv>=1.0.0",
        "httpx>=0.25.0",
        "elevenlabs>=2.0.0",
        "pygame>=2.5.0",
        "structlog>=23.0.0",
        "click>=8.0.0",
        "numpy>=1.24.0",
        "sounddevice>=0.4.6",
        "soundfile>=0.12.1",
        "webrtcvad-wheels>=2.0.11",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "voice-assistant=voice_assistant.cli.main:cli",
        ],
    },
)
