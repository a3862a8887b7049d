"""Audio conversion for amrelay.

Turns an uploaded file or a remote URL into an AMR-NB download:

    SourceIngestor      stage the input in the scratch directory
    MetadataResolver    name NetEase song links from title/artist lookups
    ExternalTranscoder  run ffmpeg with the fixed narrowband profile
    ConversionPipeline  tie the above to the ArtifactStore

Staged inputs and ffmpeg outputs are request-scoped and always removed
before the request returns.
"""
