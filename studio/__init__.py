"""
UGC Studio

Gemini-backed generation studio:
  Creator — 6-step wizard: product → character → 3 images → N video clips
  Tools   — single image, single video, image analysis
  Assets  — R2 uploads recorded per user in Supabase, with a credit balance
"""
