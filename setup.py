import os
from setuptools import setup, find_packages, Command
import subprocess

class BuildSphinx(Command):
    description = "Build Sphinx documentation."
    user_options = [
        ('builder=', 'b', 'Sphinx builder to use (html, latex)')
    ]

    def initialize_options(self):
        self.builder = 'html'
        self.build_dir = None

    def finalize_options(self):
        # Build directory for Sphinx output.
        self.build_dir = os.path.join(os.path.dirname(__file__), 'docs/_build')

    def run(self):
        # Regenerate the API .rst files for the subspace_newton package.
        from sphinx.ext.apidoc import main as sphinx_apidoc_main
        apidoc_args = [
            '--force',         # Overwrite existing .rst files.
            '--module-first',  # Put module documentation before submodule docs.
            '-o', os.path.join('docs', 'source'),
            'subspace_newton'
        ]
        sphinx_apidoc_main(apidoc_args)

        from sphinx.cmd.build import main as sphinx_main
        args = [
            '-b', self.builder,
            os.path.join('docs', 'source'),
            os.path.join(self.build_dir, self.builder)
        ]
        errno = sphinx_main(args)
        if errno:
            raise SystemExit(errno)

        # For LaTeX, optionally compile to PDF.
        if self.builder == 'latex':
            latex_dir = os.path.join(self.build_dir, 'latex')
            errno = subprocess.call(['make', 'all-pdf'], cwd=latex_dir)
            if errno:
                raise SystemExit(errno)
            print("PDF generated in:", os.path.join(latex_dir, 'Documentation.pdf'))

setup(
    name="subspace_newton",
    version="0.1.0",
    packages=find_packages(include=['subspace_newton', 'subspace_newton.*']),
    description="Newton correction of fixed-point iterations on a detected unstable subspace",
    python_requires='>=3.8',
    install_requires=['numpy', 'scipy'],
    extras_require={
        'test': ['pytest'],
        'docs': ['sphinx'],
    },
    cmdclass={'build_sphinx': BuildSphinx},
)
