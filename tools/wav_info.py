"""Print the format of recorded WAV files: python tools/wav_info.py FILE..."""

import sys

from audio.wav import WavFormatError, read_wav


def main(paths: list[str]) -> int:
    status = 0
    for path in paths:
        with open(path, "rb") as f:
            data = f.read()
        try:
            info = read_wav(data)
        except WavFormatError as e:
            print(f"{path}: not a PCM16 WAV ({e})")
            status = 1
            continue

        print(path)
        print("  sample_rate:", info.sample_rate)
        print("  channels:", info.channels)
        print("  bits_per_sample:", info.bits_per_sample)
        print("  data_bytes:", len(info.pcm))
        print("  duration_ms:", info.duration_ms)
    return status


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
