import os
import sys
from dotenv import load_dotenv

from course_bot.transcription import WhisperTranscriber

load_dotenv()

def transcribe(audio_path):
    transcriber = WhisperTranscriber(
        os.environ.get("WHISPER_MODEL", "base").strip(),
        os.environ.get("WHISPER_LANGUAGE", "ru").strip(),
    )

    print(f"Transcribing {audio_path} with Whisper '{transcriber.model_name}'... this may take a few minutes.")
    text = transcriber.transcribe_file(audio_path)

    output_path = os.path.splitext(audio_path)[0] + ".txt"
    with open(output_path, "w") as f:
        f.write(text)

    print(f"Done. Transcript saved to: {output_path}")
    return output_path

if __name__ == "__main__":
    if len(sys.argv) != 2:
        print("Usage: python scripts/transcribe.py <audio file>")
        sys.exit(1)
    transcribe(sys.argv[1])
