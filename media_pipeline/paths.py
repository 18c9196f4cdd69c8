"""Deterministic object-store paths for one job."""

import os
import re


def _safe_stem(input_ref):
    base = os.path.basename(str(input_ref or '').rstrip('/'))
    stem = os.path.splitext(base)[0]
    return re.sub(r'[^a-zA-Z0-9_.-]+', '_', stem).strip('_') or 'audio'


class JobPaths:
    def __init__(self, owner_id, job_id, run_id):
        self.owner_id = owner_id
        self.job_id = job_id
        self.run_id = str(run_id)
        self.doc_root = f'users/{owner_id}/docs/{job_id}'
        self.smartstructure_dir = f'{self.doc_root}/smartstructure'
        self.tts_dir = f'{self.doc_root}/tts'
        self.listening_dir = f'{self.doc_root}/listening-mode'

    def transcription_markdown(self, input_ref):
        return f'{self.smartstructure_dir}/Transcription-{_safe_stem(input_ref)}.md'

    @property
    def conversion_markdown(self):
        return f'{self.smartstructure_dir}/{self.job_id}_smartstructure.md'

    @property
    def conversion_clean_markdown(self):
        return f'{self.smartstructure_dir}/{self.job_id}_smartstructure_clean.md'

    @property
    def ssml(self):
        return f'{self.tts_dir}/{self.job_id}_tts.ssml'

    @property
    def synthesis_output_dir(self):
        return f'{self.listening_dir}/{self.run_id}/'

    @property
    def synthesis_output(self):
        return f'{self.synthesis_output_dir}{self.job_id}_audio_{self.run_id}.wav'

    @property
    def synthesis_final_dir(self):
        return f'{self.listening_dir}/final/{self.run_id}/'

    def final_path_for(self, source_path):
        return f'{self.synthesis_final_dir}{os.path.basename(source_path)}'
