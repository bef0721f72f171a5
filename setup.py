from pathlib import Path

from setuptools import find_packages, setup

readme = Path(__file__).parent / 'README.md'

setup(
    name='huc_tools',
    version='0.1.0',
    description='Tools for clipping a Copernicus GLO-30 DEM mosaic to USGS WBD HUC12 watersheds',
    long_description=readme.read_text(),
    long_description_content_type='text/markdown',

    license='BSD',
    include_package_data=True,

    classifiers=[
        'Intended Audience :: Science/Research',
        'License :: OSI Approved :: BSD License',
        'Natural Language :: English',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.8',
        'Programming Language :: Python :: 3.9',
    ],

    python_requires='>=3.8',

    install_requires=[
        'boto3',
        'gdal>=3.3',
    ],

    extras_require={
        'develop': [
            'flake8',
            'flake8-import-order',
            'flake8-blind-except',
            'flake8-builtins',
            'pytest',
            'pytest-cov',
            'pytest-console-scripts',
        ]
    },

    packages=find_packages(include=['huc_tools', 'huc_tools.*']),

    entry_points={
        'console_scripts': [
            'download_dem_tiles = huc_tools.dem:main',
            'prepare_huc_data = huc_tools.prepare:main',
            'submit_clip_array = huc_tools.submit:main',
            'clip_chunk = huc_tools.executor:main',
            'verify_clip_output = huc_tools.verify:main',
        ]
    },

    zip_safe=False,
)
