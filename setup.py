from setuptools import setup, find_namespace_packages

setup(
    name='zip_aligner',
    version='0.1',
    package_dir={'': 'src'},
    packages=find_namespace_packages(where='src'),
    install_requires=[
        'Click',
        'PyYAML',
        'pydantic>=2',
    ],
    extras_require={
        'test': [
            'pytest',
            'pytest-mock',
        ],
    },
    entry_points='''
        [console_scripts]
        zip-aligner=zip_aligner.cli:main
    ''',
)
