"""
Setup script for voice-tutor.

Voice Tutor is a spoken flashcard companion for the terminal. It connects
a realtime AI tutor to your microphone and speaker, asks you about the
cards due in an Anki deck (or a built-in demo deck), grades your spoken
answers and records the outcome back in Anki.

The 'voice-tutor' command is the only entry point.
"""

from setuptools import find_namespace_packages, setup

setup(
    name="voice-tutor",
    version="1.0.0",
    description="Spoken flashcard review with a realtime AI tutor and Anki",
    long_description=open("README.md", encoding="utf-8").read() if __import__("os").path.exists("README.md") else "",
    long_description_content_type="text/markdown",
    author="Right Learning",
    url="https://github.com/rightlearning/voice-tutor",
    packages=find_namespace_packages(include=["src", "src.*"]),
    py_modules=["config"],
    python_requires=">=3.10",
    install_requires=[
        # CLI
        "typer>=0.9.0,<0.27",
        "rich>=13.0.0",
        # Config & Validation
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        # HTTP
        "httpx>=0.25.0",
        # Realtime transport & audio
        "websockets>=13.0",
        "sounddevice>=0.4.6",
        # Logging
        "loguru>=0.7.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
            "ruff>=0.1.0",
            "mypy>=1.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "voice-tutor=src.cli.voice_cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: Education",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Education",
        "Topic :: Education :: Computer Aided Instruction (CAI)",
        "Topic :: Multimedia :: Sound/Audio :: Speech",
    ],
    keywords="learning spaced-repetition anki voice realtime cli education",
)
